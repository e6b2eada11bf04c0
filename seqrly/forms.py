from django import forms

from seqrly.delegation import get_delegation_info
from seqrly.exceptions import DelegationConflictError, DiscoveryError
from seqrly.utils import normalize_url


class TrustForm(forms.Form):

    trust_root = forms.CharField(widget=forms.HiddenInput)
    seqrly_token = forms.CharField(widget=forms.HiddenInput)
    include_sreg = forms.BooleanField(required=False, initial=True)

    def __init__(self, *args, **kwargs):
        self.openid_request = kwargs.pop("openid_request", None)
        self.attributes = kwargs.pop("attributes", [])
        super().__init__(*args, **kwargs)

        if not self.attributes:
            del self.fields["include_sreg"]


class BeginForm(forms.Form):

    ACTIONS = (("login", "login"), ("verify", "verify"))

    openid_identifier = forms.CharField(required=False)
    is_seqrly = forms.BooleanField(required=False)
    action = forms.ChoiceField(choices=ACTIONS, required=False)
    redirect_to = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        self.default_provider = kwargs.pop("default_provider", None)
        super().__init__(*args, **kwargs)

    def clean(self):
        cleaned_data = super().clean()

        if not cleaned_data.get("openid_identifier"):
            if cleaned_data.get("is_seqrly") and self.default_provider:
                cleaned_data["openid_identifier"] = self.default_provider
            else:
                raise forms.ValidationError("Enter an OpenID to log in with.")

        cleaned_data["action"] = cleaned_data.get("action") or "login"
        return cleaned_data


class DelegateForm(forms.Form):

    delegate = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        self.discover = kwargs.pop("discover", None)
        self.delegation_info = None
        super().__init__(*args, **kwargs)

    def clean_delegate(self):
        delegate = normalize_url(self.cleaned_data["delegate"])
        if not delegate:
            return delegate

        try:
            self.delegation_info = get_delegation_info(delegate, discover=self.discover)
        except (DiscoveryError, DelegationConflictError) as e:
            raise forms.ValidationError(e.user_message)

        return delegate
