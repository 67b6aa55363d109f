from docqa.rag.intent import IntentClassifier, QueryIntent
from docqa.rag.pipeline import ConversationalRetriever, TurnOutcome, TurnResult

__all__ = [
    "ConversationalRetriever",
    "IntentClassifier",
    "QueryIntent",
    "TurnOutcome",
    "TurnResult",
]
