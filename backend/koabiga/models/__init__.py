from koabiga.core.database import Base
from koabiga.models.admin_user import AdminUser
from koabiga.models.zone import Zone
from koabiga.models.unit import Unit
from koabiga.models.user import User
from koabiga.models.fee_rule import FeeRule
from koabiga.models.fee_rule_unit_assignment import FeeRuleUnitAssignment
from koabiga.models.fee_application import FeeApplication
from koabiga.models.payment import Payment
from koabiga.models.activity_log import ActivityLog

__all__ = [
    "Base",
    "AdminUser",
    "Zone",
    "Unit",
    "User",
    "FeeRule",
    "FeeRuleUnitAssignment",
    "FeeApplication",
    "Payment",
    "ActivityLog",
]
