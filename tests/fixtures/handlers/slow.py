"""Handler that takes far longer than any sane timeout in prepare or at exit."""

import time

from tersh.handler import BufferedHandler, HandlerFactory
from tersh.models import PrepareResult, SettingDefinition, SummaryResult


class SlowHandler(BufferedHandler):
    def prepare(self):
        if self.settings.get("sleep_in", "summarize") == "prepare":
            time.sleep(self.settings["delay"])
        return PrepareResult(command=self.command)

    def finalize(self, exit_code):
        if self.settings.get("sleep_in", "summarize") == "summarize":
            time.sleep(self.settings["delay"])
        return SummaryResult(summary="finally")


class SlowFactory(HandlerFactory):
    name = "slow"

    def matches(self, command):
        return True

    def create(self, command, settings):
        return SlowHandler(command, settings)

    def settings_schema(self):
        return {
            "delay": SettingDefinition(type="number", default=3),
            "sleep_in": SettingDefinition(
                type="string", default="summarize", description="prepare | summarize"
            ),
        }


factory = SlowFactory()
