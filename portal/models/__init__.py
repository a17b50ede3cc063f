from portal.models.customer import Customer
from portal.models.customer_address import Address
from portal.models.customer_contact import Contact
from portal.models.project import Project
from portal.models.task import Task
from portal.models.ticket import Ticket
from portal.models.comment import Comment
from portal.models.quote import Quote
from portal.models.user import User
from portal.models.audit_log import AuditLog
from portal.models.notification import Notification
from portal.models.system_settings import SystemSettings
from portal.models.login_attempt import LoginAttempt
