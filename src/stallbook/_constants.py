"""Internal constants shared across the library."""

#: Number of stalls on the exhibition floor unless configured otherwise.
DEFAULT_TOTAL_STALLS = 38

#: Broadcast channel shared by mock stores that should converge.
DEFAULT_CHANNEL_NAME = "btsa-stalls"

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
FIRESTORE_DEFAULT_DATABASE = "(default)"
DEFAULT_COLLECTION = "stalls"

#: Config values starting with this prefix are unfilled template values.
PLACEHOLDER_PREFIX = "YOUR_"

DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TOPIC_PREFIX = "stallbook"
