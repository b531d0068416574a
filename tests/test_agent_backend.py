import unittest
from unittest.mock import patch

from opencode_bridge.agent_backend import AgentBackend, AgentRegistry, create_backend, register_opencode_agent
from opencode_bridge.app_config import RuntimeEnv
from opencode_bridge.backend import OpenCodeBackend
from opencode_bridge.factory import create_opencode_backend, resolve_server_password, resolve_server_url


class AgentRegistryTests(unittest.TestCase):
    def test_register_and_create_is_case_insensitive(self) -> None:
        registry = AgentRegistry()
        created: list[dict] = []

        def factory(**options):
            created.append(options)
            return "backend"

        registry.register("Fake", factory)
        self.assertEqual("backend", registry.create("FAKE", cwd="/x"))
        self.assertEqual([{"cwd": "/x"}], created)
        self.assertEqual(["fake"], registry.names())

    def test_unknown_name_lists_supported(self) -> None:
        registry = AgentRegistry()
        registry.register("opencode", lambda **_: None)
        with self.assertRaises(ValueError) as ctx:
            registry.create("claude")
        self.assertIn("'opencode'", str(ctx.exception))

    def test_register_opencode_agent_builds_real_backend(self) -> None:
        registry = AgentRegistry()
        register_opencode_agent(registry)
        backend = registry.create("opencode", server_url="http://box:1")
        self.assertIsInstance(backend, OpenCodeBackend)
        self.assertIsInstance(backend, AgentBackend)
        self.assertEqual("http://box:1", backend.client.server_url)

    def test_create_backend_registers_builtins(self) -> None:
        backend = create_backend("opencode", server_url="http://box:2")
        self.assertIsInstance(backend, OpenCodeBackend)


class FactoryTests(unittest.TestCase):
    def test_explicit_options_win(self) -> None:
        with patch.dict("os.environ", {"OPENCODE_SERVER_URL": "http://env:1", "OPENCODE_SERVER_PASSWORD": "envpw"}):
            self.assertEqual("http://arg:2", resolve_server_url("http://arg:2"))
            self.assertEqual("argpw", resolve_server_password("argpw"))

    def test_environment_then_default(self) -> None:
        with patch.dict("os.environ", {"OPENCODE_SERVER_URL": "http://env:1"}, clear=True):
            self.assertEqual("http://env:1", resolve_server_url())
            self.assertIsNone(resolve_server_password())
        with patch.dict("os.environ", {}, clear=True):
            self.assertEqual("http://127.0.0.1:4096", resolve_server_url())

    def test_factory_and_app_config_share_one_environment_lookup(self) -> None:
        env = RuntimeEnv(server_url="http://shared:7", server_password="shared-pw")
        with patch("opencode_bridge.factory.resolve_runtime_env", return_value=env) as resolve:
            self.assertEqual("http://shared:7", resolve_server_url())
            self.assertEqual("shared-pw", resolve_server_password())
        self.assertEqual(2, resolve.call_count)

    def test_empty_password_variable_means_no_auth(self) -> None:
        with patch.dict("os.environ", {"OPENCODE_SERVER_PASSWORD": ""}, clear=True):
            self.assertIsNone(resolve_server_password())

    def test_create_opencode_backend_reports_resolved_url(self) -> None:
        with patch.dict("os.environ", {"OPENCODE_SERVER_URL": "http://env:1"}, clear=True):
            result = create_opencode_backend(cwd="/repo", response_timeout_ms=10)
        self.assertEqual("http://env:1", result.server_url)
        self.assertEqual(10, result.backend.response_timeout_ms)
        self.assertIsNone(result.backend.session_id)


if __name__ == "__main__":
    unittest.main()
