"""Central registry for SQLAlchemy models.

Importing this module loads every ORM class so relationships declared by string
resolve and ``Base.metadata`` is complete for migrations and tests.
"""

from booking_funnel.domain.customers import db_models as customer_db_models  # noqa: F401
from booking_funnel.domain.cleaners import db_models as cleaner_db_models  # noqa: F401
from booking_funnel.domain.subscriptions import db_models as subscription_db_models  # noqa: F401
from booking_funnel.domain.jobs import db_models as job_db_models  # noqa: F401
from booking_funnel.domain.payments import db_models as payment_db_models  # noqa: F401
from booking_funnel.domain.notifications import db_models as notification_db_models  # noqa: F401
from booking_funnel.domain.activity import db_models as activity_db_models  # noqa: F401
from booking_funnel.domain.outbox import db_models as outbox_db_models  # noqa: F401
from booking_funnel.domain.pricing import db_models as pricing_db_models  # noqa: F401
