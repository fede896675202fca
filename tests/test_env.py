import pytest


def test_env_defaults(monkeypatch):
    from env import get_env

    env = get_env()
    assert env.verbose is False
    assert env.quiet is False
    assert env.image_tag == "latest"
    assert env.compliance_marker == "<complianceScan>"
    assert env.compliance_mode == "substring"
    assert env.stage_timeout is None
    assert env.notify_retries == 0


def test_env_is_cached_until_reset(monkeypatch):
    from env import get_env, reset_env_caches

    first = get_env()
    monkeypatch.setenv("IMAGE_NAME", "shop/web")
    assert get_env() is first

    reset_env_caches()
    assert get_env().image_name == "shop/web"


def test_template_variables(monkeypatch):
    monkeypatch.setenv("IMAGE_NAME", "registry.local/shop")
    monkeypatch.setenv("IMAGE_TAG", "1.2.3")
    monkeypatch.setenv("TARGET_URL", "https://staging.local")
    monkeypatch.setenv("SECGATE_VAR_NAMESPACE", "payments")

    from env import get_env

    variables = get_env().template_variables()

    assert variables["image"] == "registry.local/shop:1.2.3"
    assert variables["target_url"] == "https://staging.local"
    assert variables["namespace"] == "payments"
    assert variables["run_id"] == "test-run"


def test_to_config_snapshot(monkeypatch):
    monkeypatch.setenv("SECGATE_STAGE_TIMEOUT", "90")
    monkeypatch.setenv("SECGATE_COMPLIANCE_MODE", "STRICT")
    monkeypatch.setenv("SECGATE_OUTPUT_TAIL", "15")

    from env import get_env

    config = get_env().to_config()

    assert config.stage_timeout == 90.0
    assert config.compliance_mode == "strict"
    assert config.output_tail == 15


def test_invalid_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("SECGATE_STAGE_TIMEOUT", "soon")
    monkeypatch.setenv("SECGATE_NOTIFY_RETRIES", "many")

    from env import get_env

    env = get_env()
    assert env.stage_timeout is None
    assert env.notify_retries == 0


def test_unknown_compliance_mode_rejected(monkeypatch):
    monkeypatch.setenv("SECGATE_COMPLIANCE_MODE", "xpath")

    from env import ConfigError, get_env

    with pytest.raises(ConfigError):
        get_env().to_config()


def test_as_dict_hides_webhook(monkeypatch):
    monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example/secret-token")

    from env import get_env

    data = get_env().as_dict()
    assert data["Notification"]["webhook_url"] == "configured"
