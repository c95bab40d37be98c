from .auth import User, SecondaryEmail, SessionToken
from .memberships import MembershipType, Membership, Member
from .meetings import Meeting, MeetingEvent, AttendanceEvent
from .audit import AuditLog, PaymentWebhookEvent

__all__ = [
    'User', 'SecondaryEmail', 'SessionToken',
    'MembershipType', 'Membership', 'Member',
    'Meeting', 'MeetingEvent', 'AttendanceEvent',
    'AuditLog', 'PaymentWebhookEvent',
]
