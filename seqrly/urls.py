from django.urls import path, re_path

from seqrly import views

urlpatterns = [
    path("xrds.xml", views.XRDS.as_view(), name="seqrly_xrds"),
    path("begin/", views.Begin.as_view(), name="seqrly_begin"),
    path("delegate/", views.Delegate.as_view(), name="seqrly_delegate"),
    re_path(r"^service/(?P<service>consumer|server|ajax)/$", views.Service.as_view(), name="seqrly_service"),
    path("service/", views.Service.as_view(), name="seqrly_service_query"),
    re_path(r"^(?P<username>[^/]+)/$", views.Identity.as_view(), name="seqrly_identity"),
    re_path(r"^(?P<username>[^/]+)/xrds\.xml$", views.XRDS.as_view(identity=True), name="seqrly_identity_xrds"),
]
