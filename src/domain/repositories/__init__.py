from .instance_record_repository import STATUS_INDEX, USER_ID_INDEX, InstanceRecordRepository

__all__ = ["InstanceRecordRepository", "STATUS_INDEX", "USER_ID_INDEX"]
