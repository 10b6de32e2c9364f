"""
Provider descriptor records as held by the provider store.

Field names are snake_case in Python; the camelCase names used by the
stored JSON records (``curlCommand``, ``requestPath``, ``responseType``,
``isActive`` ...) are accepted as aliases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthConfig(_Record):
    """Single-step bearer token login for providers that need one."""

    login_endpoint: str
    token_path: str = "token"
    credentials: Dict[str, Any] = Field(default_factory=dict, exclude=True)
    # Seconds-until-expiry inside the login reply; fixed window when unset
    expires_in_path: Optional[str] = None
    token: Optional[str] = Field(default=None, exclude=True)
    token_expires_at: Optional[datetime] = None


class ProviderDescriptor(_Record):
    id: str
    name: str = ""
    description: str = ""
    # Raw curl text; may embed API keys so it is never dumped back out
    request_template: str = Field(
        validation_alias=AliasChoices("request_template", "requestTemplate", "curlCommand"),
        exclude=True,
    )
    request_path: str = ""
    response_path: str = ""
    # Kept as free text so unknown values surface at invocation time
    response_encoding: str = Field(
        default="text",
        validation_alias=AliasChoices("response_encoding", "responseEncoding", "responseType"),
    )
    auth: Optional[AuthConfig] = None
    is_active: bool = True

    # Product metadata shown to callers choosing a provider
    model_id: Optional[str] = None
    supported_voices: List[str] = Field(default_factory=list)
    supported_sizes: List[str] = Field(default_factory=list)
    supported_styles: List[str] = Field(default_factory=list)
