from lark_voice.config import VoiceConfig, load_config
from lark_voice.constants import DEFAULT_MODEL_NAME, DEFAULT_WAKE_PHRASES


def test_defaults_when_environment_empty():
    cfg = load_config({})
    assert cfg == VoiceConfig()
    assert cfg.model_name == DEFAULT_MODEL_NAME
    assert cfg.wake_phrases == DEFAULT_WAKE_PHRASES
    assert cfg.api_key is None
    assert cfg.command_window_s == 10.0
    assert cfg.dedup_window_s == 2.0
    assert cfg.max_retries == 3


def test_api_key_candidates_in_order():
    assert load_config({"GOOGLE_API_KEY": "g"}).api_key == "g"
    assert load_config({"GEMINI_API_KEY": "a", "GOOGLE_API_KEY": "g"}).api_key == "a"


def test_overrides_are_parsed():
    cfg = load_config(
        {
            "LARK_DEBUG": "yes",
            "LARK_TIMEOUT_S": "2.5",
            "LARK_MAX_RETRIES": "5",
            "LARK_WAKE_PHRASES": " Hello Assistant , hey assistant ,",
            "LARK_WAKE_WORD": " Assistant ",
            "LARK_LOOSE_MAX_TOKEN_LEN": "6",
        }
    )
    assert cfg.debug is True
    assert cfg.timeout_s == 2.5
    assert cfg.max_retries == 5
    assert cfg.wake_phrases == ("hello assistant", "hey assistant")
    assert cfg.wake_word == "assistant"
    assert cfg.loose_max_token_len == 6


def test_bad_values_fall_back_to_defaults():
    cfg = load_config({"LARK_TIMEOUT_S": "soon", "LARK_MAX_RETRIES": "many", "LARK_WAKE_PHRASES": " , "})
    defaults = VoiceConfig()
    assert cfg.timeout_s == defaults.timeout_s
    assert cfg.max_retries == defaults.max_retries
    assert cfg.wake_phrases == defaults.wake_phrases
