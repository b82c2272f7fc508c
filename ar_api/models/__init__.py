"""Central model registry. Import every model so Alembic autogenerate sees them."""

from ar_api.database import Base  # noqa: F401

from ar_api.models.user import UserProfile, PendingUser  # noqa: F401
from ar_api.models.customer import AcumaticaCustomer  # noqa: F401
from ar_api.models.invoice import (  # noqa: F401
    AcumaticaInvoice,
    InvoiceColorStatusOption,
    InvoiceMemo,
    InvoiceMemoAttachment,
    InvoiceActivityLog,
)
from ar_api.models.payment import (  # noqa: F401
    AcumaticaPayment,
    PaymentInvoiceApplication,
)
from ar_api.models.ticket import (  # noqa: F401
    CollectionTicket,
    TicketInvoice,
    InvoiceAssignment,
    TicketMergeEvent,
    TicketActivityLog,
    TicketNote,
    TicketStatusOption,
    TicketTypeOption,
)
from ar_api.models.reminder import (  # noqa: F401
    InvoiceReminder,
    UserReminderNotification,
)
from ar_api.models.sync import (  # noqa: F401
    SyncStatus,
    SyncChangeLog,
    AcumaticaSyncCredentials,
    CronJobLog,
)
from ar_api.models.activity_log import UserActivityLog  # noqa: F401
from ar_api.models.email import (  # noqa: F401
    EmailFormula,
    EmailTemplate,
    EmailCustomer,
    EmailCustomerAssignment,
    EmailLog,
)
from ar_api.models.auto_ticket_rule import AutoTicketRule  # noqa: F401
