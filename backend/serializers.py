from datetime import datetime

from bson import ObjectId

# Password hashes are stored as bytes; nothing binary is ever sent to clients.
_DROPPED_TYPES = (bytes, bytearray)


def convert_mongo_types(obj):
    if isinstance(obj, list):
        return [convert_mongo_types(item) for item in obj]
    if isinstance(obj, dict):
        return {
            key: convert_mongo_types(value)
            for key, value in obj.items()
            if not isinstance(value, _DROPPED_TYPES)
        }
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj
