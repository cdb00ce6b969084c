from churchdesk.models.organization import Organization
from churchdesk.models.person import Person, PersonTag, Tag
from churchdesk.models.whatsapp import WhatsAppConfig, WhatsAppConversation, WhatsAppMessage
from churchdesk.models.integration import IntegrationOutboxEvent
from churchdesk.models.automation import Automation, AutomationRun, AutomationRunStep
