import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from taskcal.config_manager import ConfigManager
from taskcal.main import run_hook
from taskcal.models import ACTION_CREATE, HookResult, TaskOutcome

OLD = {"uuid": "u-1", "description": "Buy milk", "status": "pending", "due": "20240101T120000Z"}
NEW = dict(OLD, description="Buy oat milk")


class RunHookTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.manager = ConfigManager(str(Path(self.temp_dir.name) / "config.yaml"))

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_echoes_modified_task_and_syncs(self) -> None:
        stdin = io.StringIO(json.dumps(OLD) + "\n" + json.dumps(NEW) + "\n")
        stdout = io.StringIO()
        result = HookResult(outcomes=[TaskOutcome(task_id="u-1", action=ACTION_CREATE, event_id="evt-1")])
        with mock.patch("taskcal.main.run_invocation", return_value=result) as run_invocation:
            code = run_hook(stdin, stdout, config_manager=self.manager)
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout.getvalue()), NEW)
        snapshots = run_invocation.call_args.args[1]
        self.assertEqual([task.description for task in snapshots], ["Buy milk", "Buy oat milk"])

    def test_empty_input_does_nothing(self) -> None:
        stdout = io.StringIO()
        with mock.patch("taskcal.main.run_invocation") as run_invocation:
            code = run_hook(io.StringIO(""), stdout, config_manager=self.manager)
        self.assertEqual(code, 0)
        self.assertEqual(stdout.getvalue(), "")
        run_invocation.assert_not_called()

    def test_garbage_input_fails_hook(self) -> None:
        stdout = io.StringIO()
        code = run_hook(io.StringIO("not json"), stdout, config_manager=self.manager)
        self.assertEqual(code, 1)
        self.assertEqual(stdout.getvalue(), "")

    def test_sync_failure_does_not_reject_edit(self) -> None:
        stdout = io.StringIO()
        with mock.patch("taskcal.main.run_invocation", side_effect=RuntimeError("no calendar access token")):
            code = run_hook(io.StringIO(json.dumps(NEW)), stdout, config_manager=self.manager)
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout.getvalue()), NEW)


if __name__ == "__main__":
    unittest.main()
