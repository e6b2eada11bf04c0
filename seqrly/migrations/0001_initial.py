from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Association",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=64, unique=True)),
                ("server_key", models.CharField(db_index=True, max_length=64)),
                ("assoc_type", models.CharField(max_length=64)),
                ("server_url", models.CharField(max_length=2047)),
                ("handle", models.CharField(max_length=255)),
                ("secret", models.TextField()),
                ("lifetime", models.PositiveIntegerField()),
                ("issued", models.DateTimeField()),
                ("expires", models.DateTimeField(db_index=True)),
            ],
        ),
        migrations.CreateModel(
            name="Nonce",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=64, unique=True)),
                ("server_url", models.CharField(max_length=2047)),
                ("salt", models.CharField(max_length=40)),
                ("timestamp", models.PositiveIntegerField()),
                ("expires", models.DateTimeField(db_index=True)),
            ],
        ),
        migrations.CreateModel(
            name="TrustedSite",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("site_hash", models.CharField(max_length=32)),
                ("url", models.CharField(max_length=2047)),
                ("last_login", models.DateTimeField(blank=True, null=True)),
                ("release_attributes", models.BooleanField(default=False)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="seqrly_trusted_sites", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "unique_together": {("user", "site_hash")},
                "permissions": [("use_seqrly_provider", "Can use this site as an OpenID provider")],
            },
        ),
        migrations.CreateModel(
            name="Delegation",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.CharField(max_length=2047)),
                ("services", models.JSONField(default=list)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="seqrly_delegation", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="Identity",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.TextField()),
                ("hash", models.CharField(max_length=32, unique=True)),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="seqrly_identities", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name_plural": "identities",
            },
        ),
    ]
