from models.table import ColumnDescriptor, TableDescriptor, SchemaContext  # noqa: F401
from models.query import ChartIntent, TranslationResult, ValidationVerdict, ExecutionResult  # noqa: F401
from models.chart import ChartConfiguration, TableConfig, ChartConfig  # noqa: F401
from models.chat import ChatRequest, ChatResponse, TenantContext, Conversation, ConversationTurn  # noqa: F401
