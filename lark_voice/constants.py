"""Module-wide constants for the voice command pipeline."""

OFFLINE_UNAVAILABLE_RESPONSE = (
    "That command needs the network. It has been queued and will run when the connection returns."
)
RETRY_QUEUED_HINT = " The command has been queued and will be retried."
NO_OFFLINE_MATCH_RESPONSE = (
    "I couldn't match that command offline and no remote interpreter is configured."
)
STEP_DOWN_HINT = " You may want to switch to offline mode if network issues persist."

DEFAULT_MODEL_NAME = "gemini-1.5-flash"
DEFAULT_SECONDARY_MODEL_NAME = "gemini-1.5-flash-8b"
DEFAULT_TIMEOUT_S = 8.0
DEFAULT_DEBUG = False
DEFAULT_TEMPERATURE = 0.2
DEFAULT_TOP_P = 0.9
DEFAULT_MAX_OUTPUT_TOKENS = 256
DEFAULT_MAX_CONCURRENT_REMOTE = 2
GEMINI_API_KEY_ENV_CANDIDATES = ("GEMINI_API_KEY", "GOOGLE_API_KEY")

# Transcript source restart policy
RESTART_BASE_MS = 300
RESTART_CAP_MS = 3000
RESTART_STABILITY_S = 30.0
TRANSCRIPT_CHANNEL_MAXSIZE = 256

# Wake word
DEFAULT_WAKE_PHRASES = ("hey lark", "hi lark", "hello lark", "ok lark")
DEFAULT_WAKE_WORD = "lark"
WAKE_GREETINGS = ("hey", "hi", "hello", "ok", "okay")
DEFAULT_PHONETIC_NEIGHBORS: dict[str, tuple[str, ...]] = {
    "lark": ("clark", "larc", "large", "lurk", "bark", "mark", "dark"),
}
COMMAND_WINDOW_S = 10.0
DEDUP_WINDOW_S = 2.0
MIN_TRANSCRIPT_CHARS = 2
MIN_TRANSCRIPT_CONFIDENCE = 0.3

# Matcher tolerance bounds
EXACT_MATCH_SCORE = 1.0
VARIANT_MATCH_SCORE = 0.8
PHONETIC_MATCH_SCORE = 0.6
LOOSE_MATCH_WEIGHT = 0.5
LOOSE_MAX_TOKEN_LEN = 8
LOOSE_MIN_SIMILARITY = 0.75
MIN_WAKE_CONFIDENCE = 0.3

# Cache
DEFAULT_CACHE_PATH = "data/lark_cache.sqlite3"
CACHE_MAX_AGE_DAYS = 30
CACHE_SWEEP_INTERVAL_S = 3600.0
CACHE_STORES = ("commands", "voice_data", "analytics")
TTL_STATIC = "static"
TTL_DYNAMIC = "dynamic"
DYNAMIC_MAX_AGE_S = 24 * 3600.0

# Retry queue
RETRY_BASE_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 30.0
MAX_RETRIES = 3
QUEUE_MAX_HISTORY = 200

# Degradation
FAILURE_THRESHOLD = 3
MAX_CONSECUTIVE_ERRORS = 3
NETWORK_SERVICE = "network"
SPEECH_SERVICE = "speech-synthesis"
PRIMARY_INTERPRETER = "interpreter-primary"
SECONDARY_INTERPRETER = "interpreter-secondary"

# Telemetry
TELEMETRY_MAX_HISTORY = 1000
TELEMETRY_WINDOW_S = 7 * 24 * 3600.0
TELEMETRY_ALERT_SUCCESS_RATE = 0.5
TELEMETRY_ALERT_MIN_SAMPLES = 5
DEFAULT_EVENT_LOG_PATH = "logs/lark_events.jsonl"
DEFAULT_LOG_MAX_BYTES = 5_000_000

DEFAULT_VOICE_ID = "alloy"

# Chain splitting
CHAIN_SEPARATORS = (
    "and then",
    "after that",
    "followed by",
    "then",
    "next",
    ";",
    "and",
)
CHAIN_BOUNDARY_OPENERS = ("first", "begin by", "start by")
CHAIN_BOUNDARIES = ("first", "second", "third", "finally", "lastly", "begin by", "start by")

# Miranda
MIRANDA_LANGUAGES = ("english", "spanish", "french", "vietnamese", "mandarin", "arabic")
LANGUAGE_ALIASES: dict[str, str] = {
    "english": "english",
    "spanish": "spanish",
    "español": "spanish",
    "espanol": "spanish",
    "french": "french",
    "français": "french",
    "francais": "french",
    "vietnamese": "vietnamese",
    "tiếng việt": "vietnamese",
    "mandarin": "mandarin",
    "chinese": "mandarin",
    "中文": "mandarin",
    "arabic": "arabic",
    "عربي": "arabic",
}

MIRANDA_RIGHTS: dict[str, str] = {
    "english": (
        "You have the right to remain silent. Anything you say can and will be used against you "
        "in a court of law. You have the right to an attorney. If you cannot afford an attorney, "
        "one will be provided for you. Do you understand the rights I have just read to you?"
    ),
    "spanish": (
        "Tiene el derecho a permanecer en silencio. Cualquier cosa que diga puede y será usada en "
        "su contra en un tribunal. Tiene el derecho a un abogado. Si no puede pagar un abogado, se "
        "le proporcionará uno. ¿Entiende los derechos que le acabo de leer?"
    ),
    "french": (
        "Vous avez le droit de garder le silence. Tout ce que vous direz pourra être utilisé contre "
        "vous devant un tribunal. Vous avez le droit à un avocat. Si vous ne pouvez pas vous "
        "permettre un avocat, un vous sera fourni. Comprenez-vous les droits que je viens de vous lire?"
    ),
    "vietnamese": (
        "Bạn có quyền giữ im lặng. Bất cứ điều gì bạn nói có thể và sẽ được sử dụng chống lại bạn "
        "tại tòa án. Bạn có quyền có một luật sư. Nếu bạn không có khả năng chi trả cho một luật sư, "
        "một luật sư sẽ được chỉ định cho bạn. Bạn có hiểu những quyền tôi vừa đọc cho bạn không?"
    ),
    "mandarin": (
        "你有权保持沉默。你所说的任何话都可以并将会在法庭上用作对你不利的证据。你有权请律师。"
        "如果你请不起律师，法院会为你指定一位。你明白我刚才向你宣读的这些权利吗？"
    ),
    "arabic": (
        "لديك الحق في التزام الصمت. أي شيء تقوله يمكن ويسوف يستخدم ضدك في المحكمة. لديك الحق في "
        "توكيل محام. إذا لم تكن قادراً على تحمل تكاليف محام، سيتم توفير محام لك. هل تفهم الحقوق "
        "التي قرأتها للتو؟"
    ),
}

COMMON_STATUTES: dict[str, str] = {
    "14:30": (
        "First degree murder - the killing of a human being when the offender has specific intent "
        "to kill or to inflict great bodily harm."
    ),
    "14:95": "Illegal carrying of weapons - unlawful carrying of a concealed weapon by a person.",
    "14:402": (
        "Prohibited items in correctional facilities - introduction or possession of contraband in "
        "any jail, prison, correctional facility, or institution."
    ),
}

THREAT_ADVISORIES: tuple[tuple[str, str], ...] = (
    (
        r"weapon|gun|knife|armed",
        "CAUTION: Potential armed subject. Maintain safe distance and request backup.",
    ),
    (
        r"hostile|aggressive|threatening",
        "Subject showing signs of aggression. Maintain tactical awareness and establish safe perimeter.",
    ),
    (
        r"flee|running|escape|fled",
        "Subject attempting to flee. Note direction of travel and coordinate containment.",
    ),
)
DEFAULT_THREAT_ADVISORY = (
    "No specific threat indicators identified. Maintain situational awareness and report changes."
)

# Interpreter prompt
BASE_SYSTEM_INSTRUCTION = (
    "You are LARK, a voice assistant for law enforcement officers in the field. "
    "Interpret the officer's spoken command and reply with a single JSON object."
)
OUTPUT_CONTRACT = (
    'Respond only with JSON of the form {"action": <one of miranda, statute, threat, tactical, '
    'general_knowledge>, "parameters": {...}, "resultText": <short spoken answer>}. '
    "Use parameters.language for miranda, parameters.statute for statute, "
    "parameters.description for threat and parameters.query otherwise."
)
ACTION_HINTS: dict[str, str] = {
    "miranda": "Miranda requests must carry the requested language, English when unspecified.",
    "statute": "Statute numbers use the Louisiana RS format, for example 14:30.",
    "threat": "Threat assessments must be brief and safety-first.",
    "tactical": "Tactical summaries must be three sentences or fewer.",
}
