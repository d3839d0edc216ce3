from infra.components.iam import AccountRoles, OperatorRoles
from infra.components.kms import EncryptionKey
from infra.components.oidc import ClusterOidcIdentity
from infra.components.propagation import PropagationDelay

__all__ = ["AccountRoles", "OperatorRoles", "ClusterOidcIdentity", "EncryptionKey", "PropagationDelay"]
