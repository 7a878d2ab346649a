from orientbrain import DesyncMode, ExploitMode, ResolverConfig


def test_defaults():
    cfg = ResolverConfig()
    assert cfg.history_size == 24
    assert cfg.max_desync_angle == 58.0
    assert cfg.exploit_angle() == 35.0
    assert cfg.replace(exploit_mode=ExploitMode.DEFENSIVE).exploit_angle() == 60.0


def test_from_env_overrides():
    env = {
        "ORIENTBRAIN_JITTER_THRESHOLD": "25",
        "ORIENTBRAIN_ADAPTIVE_ENABLED": "false",
        "ORIENTBRAIN_DESYNC_MODE": "BRUTE_FORCE",
        "ORIENTBRAIN_HISTORY_SIZE": "32",
        "ORIENTBRAIN_TICK_RATE": "not-a-number",
    }
    cfg = ResolverConfig.from_env(environ=env)
    assert cfg.jitter_threshold == 25.0
    assert cfg.adaptive_enabled is False
    assert cfg.desync_mode == DesyncMode.BRUTE_FORCE
    assert cfg.history_size == 32
    assert cfg.tick_rate == 64.0
