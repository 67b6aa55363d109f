from docqa.db.session import SCHEMA_VERSION, KnowledgeDatabase

__all__ = ["SCHEMA_VERSION", "KnowledgeDatabase"]
