"""Tests for config_loader: load_config, deep_merge and the [[subscription]] merge."""

from __future__ import annotations

from pathlib import Path

import pytest

from config_loader import deep_merge, enabled_subscriptions, load_config, merge_subscription_lists


class TestLoadConfigWithExplicitPaths:
    def test_single_config_file(self, tmp_path: Path) -> None:
        """A single --config file is loaded as the full config."""
        cfg = tmp_path / "my.toml"
        cfg.write_text('[connection]\nendpoint = "ws://robot.local:9090"\n')

        result = load_config([str(cfg)])

        assert result["connection"]["endpoint"] == "ws://robot.local:9090"

    def test_multiple_config_files_overlay(self, tmp_path: Path) -> None:
        """Multiple --config files are merged in order."""
        base = tmp_path / "base.toml"
        base.write_text('[connection]\nendpoint = "ws://localhost:9090"\noutbound_policy = "drop"\n')

        overlay = tmp_path / "overlay.toml"
        overlay.write_text('[connection]\nendpoint = "ws://robot.local:9090"\n')

        result = load_config([str(base), str(overlay)])

        assert result["connection"]["endpoint"] == "ws://robot.local:9090"
        assert result["connection"]["outbound_policy"] == "drop"

    def test_subscription_overlay_merges_by_topic(self, tmp_path: Path) -> None:
        """Subscription lists in overlays merge by topic, not append blindly."""
        base = tmp_path / "base.toml"
        base.write_text(
            '[[subscription]]\ntopic = "/chatter"\nenabled = true\n'
            'type = "std_msgs/String"\n'
        )

        overlay = tmp_path / "overlay.toml"
        overlay.write_text(
            '[[subscription]]\ntopic = "/chatter"\nenabled = false\n'
            '[[subscription]]\ntopic = "/joints"\ntype = "sensor_msgs/JointState"\n'
        )

        result = load_config([str(base), str(overlay)])

        assert result["subscription"] == [{"topic": "/joints", "type": "sensor_msgs/JointState"}]

    def test_overlay_reenables_subscription(self, tmp_path: Path) -> None:
        base = tmp_path / "base.toml"
        base.write_text('[[subscription]]\ntopic = "/chatter"\nenabled = false\ntype = "std_msgs/String"\n')
        overlay = tmp_path / "overlay.toml"
        overlay.write_text('[[subscription]]\ntopic = "/chatter"\nenabled = true\n')

        result = load_config([str(base), str(overlay)])

        assert result["subscription"] == [{"topic": "/chatter", "enabled": True, "type": "std_msgs/String"}]

    def test_disabled_only_file(self, tmp_path: Path) -> None:
        cfg = tmp_path / "my.toml"
        cfg.write_text('[[subscription]]\ntopic = "/chatter"\nenabled = false\n')

        assert load_config([str(cfg)])["subscription"] == []

    def test_skips_config_d(self, tmp_path: Path) -> None:
        """When --config is provided, config.d directories are not loaded."""
        cfg = tmp_path / "my.toml"
        cfg.write_text('[topics]\nnamespace = "ainex"\n')

        config_d = tmp_path / "config.d"
        config_d.mkdir()
        (config_d / "99-extra.toml").write_text('[topics]\nnamespace = "OVERWRITTEN"\n')

        result = load_config([str(cfg)], config_dir=str(config_d))

        assert result["topics"]["namespace"] == "ainex"

    def test_missing_file_skipped(self, tmp_path: Path) -> None:
        """A nonexistent --config path is skipped with a log error."""
        cfg = tmp_path / "exists.toml"
        cfg.write_text('[topics]\nnamespace = "ainex"\n')

        result = load_config(["/nonexistent/path.toml", str(cfg)])

        assert result["topics"]["namespace"] == "ainex"


class TestLoadConfigDefaults:
    def test_base_and_config_d(self, tmp_path: Path) -> None:
        base = tmp_path / "config.toml"
        base.write_text('[connection]\nendpoint = "ws://localhost:9090"\n')
        config_d = tmp_path / "config.d"
        config_d.mkdir()
        (config_d / "10-endpoint.toml").write_text('[connection]\nendpoint = "ws://first:9090"\n')
        (config_d / "20-endpoint.toml").write_text('[connection]\nendpoint = "ws://second:9090"\n')
        (config_d / "notes.txt").write_text('ignored')

        result = load_config(None, base_path=str(base), config_dir=str(config_d))

        assert result["connection"]["endpoint"] == "ws://second:9090"

    def test_missing_base_returns_empty(self, tmp_path: Path) -> None:
        result = load_config(None, base_path=str(tmp_path / "absent.toml"), config_dir=str(tmp_path / "absent.d"))
        assert result == {}


class TestDeepMerge:
    def test_nested(self) -> None:
        base = {'connection': {'endpoint': 'ws://a', 'mqtt': {'qos': 0, 'keepalive': 60}}}
        override = {'connection': {'mqtt': {'qos': 1}}}
        assert deep_merge(base, override) == {'connection': {'endpoint': 'ws://a', 'mqtt': {'qos': 1, 'keepalive': 60}}}

    def test_does_not_mutate_base(self) -> None:
        base = {'general': {'log_level': 'INFO'}}
        deep_merge(base, {'general': {'log_level': 'DEBUG'}})
        assert base == {'general': {'log_level': 'INFO'}}


class TestMergeSubscriptionLists:
    def test_empty_override(self) -> None:
        assert merge_subscription_lists([{'topic': '/a'}], []) == [{'topic': '/a'}]

    def test_does_not_mutate_inputs(self) -> None:
        base = [{'topic': '/a', 'type': 'std_msgs/String'}]
        merge_subscription_lists(base, [{'topic': '/a', 'enabled': False}])
        assert base == [{'topic': '/a', 'type': 'std_msgs/String'}]

    def test_duplicate_topics_in_one_layer_collapse(self) -> None:
        result = merge_subscription_lists([], [{'topic': '/a'}, {'topic': '/a', 'type': 'std_msgs/Int32'}])
        assert result == [{'topic': '/a', 'type': 'std_msgs/Int32'}]

    def test_topic_whitespace_stripped(self) -> None:
        result = merge_subscription_lists([{'topic': '/a'}], [{'topic': ' /a ', 'enabled': False}])
        assert result == [{'topic': '/a', 'enabled': False}]

    @pytest.mark.parametrize("entry", [{'type': 'std_msgs/String'}, {'topic': ''}])
    def test_entries_without_topic_dropped(self, entry) -> None:
        result = merge_subscription_lists([{'topic': '/a'}], [entry])
        assert result == [{'topic': '/a'}]


class TestEnabledSubscriptions:
    def test_keeps_enabled_and_unset(self) -> None:
        subs = [{'topic': '/a'}, {'topic': '/b', 'enabled': True}, {'topic': '/c', 'enabled': False}]
        assert enabled_subscriptions(subs) == subs[:2]

    def test_config_d_can_disable(self, tmp_path: Path) -> None:
        base = tmp_path / "config.toml"
        base.write_text('[[subscription]]\ntopic = "/chatter"\n[[subscription]]\ntopic = "/joints"\n')
        config_d = tmp_path / "config.d"
        config_d.mkdir()
        (config_d / "50-quiet.toml").write_text('[[subscription]]\ntopic = "/chatter"\nenabled = false\n')

        result = load_config(None, base_path=str(base), config_dir=str(config_d))

        assert [s["topic"] for s in result["subscription"]] == ["/joints"]


class TestExampleConfig:
    def test_example_config_is_valid(self) -> None:
        from robobus.settings import SessionConfig

        example = Path(__file__).resolve().parent.parent / "config.example.toml"
        settings = SessionConfig.from_dict(load_config([str(example)]))

        assert settings.endpoint == "ws://localhost:9090"
        assert settings.subscriptions == [("/chatter", "std_msgs/String")]
        assert settings.mqtt.username is None
