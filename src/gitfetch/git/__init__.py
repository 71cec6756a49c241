"""Git source resolution: errors, credentials, transport and metadata."""

from .errors import (
	AuthenticationError,
	CheckoutError,
	CredentialResolutionError,
	FetchCancelledError,
	FetchError,
	FilesystemError,
	ProxyConfigurationError,
	RevisionResolutionError,
	TransportError,
)
from .keychain import Anonymous, BasicAuth, Credential, Keychain, SSHKey
from .metadata import ProjectMetadata, StagedMetadata, emit_metadata, stage_metadata
from .transport import Transport, build_https_transport

__all__ = [
	"Anonymous",
	"AuthenticationError",
	"BasicAuth",
	"CheckoutError",
	"Credential",
	"CredentialResolutionError",
	"FetchCancelledError",
	"FetchError",
	"FilesystemError",
	"Keychain",
	"ProjectMetadata",
	"ProxyConfigurationError",
	"RevisionResolutionError",
	"SSHKey",
	"StagedMetadata",
	"Transport",
	"TransportError",
	"build_https_transport",
	"emit_metadata",
	"stage_metadata",
]
