from pagebot.models.bot_settings import BotSettings
from pagebot.models.catalog import PaymentMethod, Product, Property
from pagebot.models.connected_page import ConnectedPage
from pagebot.models.conversation_message import ConversationMessage
from pagebot.models.lead import Lead
from pagebot.models.pipeline_stage import PipelineStage
from pagebot.models.takeover_session import HumanTakeoverSession

__all__ = [
    "BotSettings",
    "ConnectedPage",
    "PipelineStage",
    "Lead",
    "HumanTakeoverSession",
    "ConversationMessage",
    "Product",
    "Property",
    "PaymentMethod",
]
