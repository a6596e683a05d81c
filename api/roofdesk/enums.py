from enum import Enum


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    BRANCH_ADMIN = "branchAdmin"
    INSPECTOR = "inspector"
    CUSTOMER = "customer"


# permission level each role is provisioned with
PERMISSION_LEVELS: dict[Role, int] = {
    Role.CUSTOMER: -1,
    Role.INSPECTOR: 0,
    Role.BRANCH_ADMIN: 1,
    Role.SUPERADMIN: 2,
}


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SEND = "send"
    CANCEL = "cancel"
    CORRECT = "correct"
    DELETE_BRANCH = "deleteBranch"
    MANAGE_USERS = "manageUsers"
    ACCEPT_PUBLIC_DOCUMENT = "acceptPublicDocument"


class DocumentKind(str, Enum):
    OFFER = "offer"
    SERVICE_AGREEMENT = "service-agreement"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    DocumentStatus.ACCEPTED,
    DocumentStatus.REJECTED,
    DocumentStatus.EXPIRED,
    DocumentStatus.CANCELLED,
})


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def status(self) -> DocumentStatus:
        return DocumentStatus(self.value)


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    ARCHIVED = "archived"
    FAILED = "failed"
