REDIS_NEXT_ROOM_ID_KEY = "nextRoomID" # string - counter for room ids
REDIS_KEY_POOL_KEY = "roomKeys" # set of unused room keys
REDIS_ROOM_ID_FOR_KEY = "roomIDForKey" # hash - key -> room id
REDIS_KEY_FOR_ROOM_ID = "keyForRoomID" # hash - room id -> key
REDIS_USERS_KEY = "roomUsers:{room_id}" # room id - set of user ids
REDIS_DATA_KEY = "roomData:{room_id}" # room id - metadata hash
REDIS_PUBLIC_ROOMS_KEY = "publicRooms" # list of public room ids

# **Example `roomData:{id}` hash fields**
# - any caller defined field name
# - strings are stored as-is, dicts and lists as json strings
