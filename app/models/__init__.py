# Models package — import all models here so Alembic can discover them.

from app.models.user import User  # noqa: F401
from app.models.service import Service  # noqa: F401
from app.models.purchase import Purchase  # noqa: F401
from app.models.service_consumption import ServiceConsumption  # noqa: F401
from app.models.stripe_event import StripeEvent  # noqa: F401
