"""Handler runtime bridge: wire format, faults, timeouts, both backends."""

from __future__ import annotations

import json

import pytest

from conftest import sample_ref
from tersh.errors import HandlerFault, HandlerTimeout
from tersh.registry import FactoryRef
from tersh.runtime import HandlerHost, ProcessRuntime, ThreadRuntime, create_runtime, load_factory
from tersh.runtime.host import encode_call

CARGO = FactoryRef(name="cargo", target="tersh.handlers.cargo:CargoHandlerFactory")


class TestLoadFactory:
    def test_module_target_with_class(self):
        factory = load_factory("tersh.handlers.cargo:CargoHandlerFactory")
        assert factory.matches("cargo build")

    def test_file_target(self):
        factory = load_factory(sample_ref("silent").target)
        assert factory.matches("anything")

    def test_missing_separator(self):
        with pytest.raises(ValueError):
            load_factory("tersh.handlers.cargo")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_factory(f"{tmp_path}/nope.py:factory")

    def test_not_a_factory(self, tmp_path):
        path = tmp_path / "plain.py"
        path.write_text("factory = 42\n")
        with pytest.raises(TypeError):
            load_factory(f"{path}:factory")


class TestHandlerHost:
    def test_unknown_op_is_an_error_reply(self):
        reply = json.loads(HandlerHost().handle(encode_call("explode", {})))
        assert reply["ok"] is False
        assert "unknown operation" in reply["error"]

    def test_garbage_message_is_an_error_reply(self):
        reply = json.loads(HandlerHost().handle(b"\xff not json"))
        assert reply["ok"] is False

    def test_prepare_twice_is_rejected(self):
        host = HandlerHost()
        instance = host.op_create(CARGO.target, "cargo build", {"quiet": True})
        host.op_prepare(instance)
        with pytest.raises(RuntimeError):
            host.op_prepare(instance)

    def test_prepare_after_summarize_is_rejected(self):
        host = HandlerHost()
        instance = host.op_create(CARGO.target, "cargo build", {})
        host.op_summarize(instance, "", "", None)
        with pytest.raises(RuntimeError):
            host.op_prepare(instance)

    def test_release_forgets_instance(self):
        host = HandlerHost()
        instance = host.op_create(CARGO.target, "cargo build", {})
        host.op_release(instance)
        with pytest.raises(KeyError):
            host.op_summarize(instance, "", "", 0)


class TestThreadRuntime:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, runtime):
        schema = await runtime.settings_schema(CARGO)
        assert set(schema) == {"quiet", "show_warnings", "RUST_LOG"}
        assert await runtime.matches(CARGO, "cargo build")

        handle = await runtime.create(CARGO, "cargo build", {"quiet": True})
        prepared = await runtime.prepare(handle)
        assert prepared.command == "cargo --quiet build"

        assert (await runtime.summarize(handle, "", "", None)).summary is None
        final = await runtime.summarize(handle, "", "", 0)
        assert final.summary == "Build succeeded"
        await runtime.release(handle)

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_fault(self, runtime):
        ref = sample_ref("broken")
        handle = await runtime.create(ref, "sh -c true", {"fail_in": "prepare"})
        with pytest.raises(HandlerFault) as exc:
            await runtime.prepare(handle)
        assert exc.value.handler == "broken"
        assert exc.value.call == "prepare"
        assert "prepare exploded" in exc.value.detail

    @pytest.mark.asyncio
    async def test_second_prepare_is_a_fault(self, runtime):
        handle = await runtime.create(CARGO, "cargo build", {})
        await runtime.prepare(handle)
        with pytest.raises(HandlerFault):
            await runtime.prepare(handle)

    @pytest.mark.asyncio
    async def test_unserializable_arguments_are_a_fault(self, runtime):
        with pytest.raises(HandlerFault):
            await runtime.create(CARGO, "cargo build", {"quiet": object()})

    @pytest.mark.asyncio
    async def test_bad_target_is_a_fault(self, runtime):
        ref = FactoryRef(name="ghost", target="tersh.no_such_module:factory")
        with pytest.raises(HandlerFault):
            await runtime.matches(ref, "anything")

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        runtime = ThreadRuntime(timeout=0.2)
        ref = sample_ref("slow")
        handle = await runtime.create(ref, "x", {"delay": 1})
        with pytest.raises(HandlerTimeout) as exc:
            await runtime.summarize(handle, "", "", 0)
        assert exc.value.kind == "handler_timeout"
        assert exc.value.call == "summarize"


class TestProcessRuntime:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self):
        async with ProcessRuntime(timeout=10.0) as runtime:
            handle = await runtime.create(CARGO, ["cargo", "build"], {"RUST_LOG": "info"})
            prepared = await runtime.prepare(handle)
            assert prepared.env == {"RUST_LOG": "info"}
            final = await runtime.summarize(handle, "", "", 0)
            assert final.summary == "Build succeeded"
            assert runtime.pid is not None
        assert runtime.pid is None

    @pytest.mark.asyncio
    async def test_timeout_kills_worker_and_recovers(self):
        async with ProcessRuntime(timeout=0.5) as runtime:
            ref = sample_ref("slow")
            handle = await runtime.create(ref, "x", {"delay": 30})
            first_pid = runtime.pid

            with pytest.raises(HandlerTimeout):
                await runtime.summarize(handle, "", "", 0)
            assert runtime.pid is None

            # Next call gets a fresh worker; the old instance is gone
            assert await runtime.matches(CARGO, "cargo build")
            assert runtime.pid not in (None, first_pid)
            with pytest.raises(HandlerFault):
                await runtime.summarize(handle, "", "", 0)

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_fault(self):
        async with ProcessRuntime(timeout=10.0) as runtime:
            handle = await runtime.create(sample_ref("broken"), "x", {"fail_in": "summarize"})
            with pytest.raises(HandlerFault) as exc:
                await runtime.summarize(handle, "", "", 1)
            assert "summarize exploded" in exc.value.detail


def test_create_runtime_backends():
    assert isinstance(create_runtime("thread"), ThreadRuntime)
    assert isinstance(create_runtime("process", timeout=3), ProcessRuntime)
    with pytest.raises(ValueError):
        create_runtime("docker")
