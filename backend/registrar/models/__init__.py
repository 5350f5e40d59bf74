from registrar.models.record import StoredRecord

__all__ = ["StoredRecord"]
