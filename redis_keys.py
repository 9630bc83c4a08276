REDIS_USERS_KEY = "room:users:{slug}" # room id - set of connection IDs
REDIS_CONN_KEY = "conn:{connection_id}" # connection id - connection metadata

# **Example `conn:{connection_id}` hash fields**
# - `room_id` = 64-hex room id
# - `room_kind` = "global" or "name"
# - `connected_at` = ISO timestamp
