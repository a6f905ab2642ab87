"""Unit tests for spaider.pipeline."""

from types import SimpleNamespace
from unittest import mock

import openai
import pytest

from spaider.completion import CompletionClient
from spaider.errors import SchemaValidationError, TransportError
from spaider.models import Change, ChangeOverview, FileContext, Intent
from spaider.pipeline import (
    FileRegistry,
    PipelineContext,
    StageResult,
    _guard,
    load_files,
    run_pipeline,
)
from spaider.symbols import TreeSitterSymbolIndex


def _write(root, rel, text):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _fake_client(rewritten="rewritten"):
    """Client whose unstructured completions return *rewritten*."""
    client = mock.MagicMock()
    client.complete = mock.AsyncMock(return_value=rewritten)
    return client


async def _collect(gen):
    return [event async for event in gen]


def _generated_for(overview_changes):
    """side_effect for generate_changes_for_file keyed by planned path."""

    async def fake(client, intent, file, overview):
        return overview_changes[overview.file_path]

    return fake


# ---------------------------------------------------------------------------
# FileRegistry
# ---------------------------------------------------------------------------


class TestFileRegistry:

    def test_add_returns_delta(self):
        registry = FileRegistry([FileContext(path="a")])
        added = registry.add([FileContext(path="b"), FileContext(path="a"), FileContext(path="c")])
        assert [fc.path for fc in added] == ["b", "c"]
        assert registry.paths() == ["a", "b", "c"]

    def test_add_never_replaces_existing(self):
        original = FileContext(path="a", content="old")
        registry = FileRegistry([original])
        registry.add([FileContext(path="a", content="new")])
        assert registry.get("a") is original

    def test_duplicates_in_one_batch(self):
        registry = FileRegistry()
        added = registry.add([FileContext(path="a"), FileContext(path="a")])
        assert len(added) == 1
        assert len(registry) == 1

    def test_update_content(self):
        registry = FileRegistry([FileContext(path="a")])
        registry.update_content("a", "text", symbols={"zeta", "alpha"})
        assert registry.get("a").content == "text"
        assert registry.get("a").symbols == ["alpha", "zeta"]

    def test_update_unknown_path_raises(self):
        with pytest.raises(KeyError):
            FileRegistry().update_content("missing", "x")

    def test_view_is_read_only(self):
        registry = FileRegistry([FileContext(path="a")])
        view = registry.view()
        assert list(view) == ["a"]
        with pytest.raises(TypeError):
            view["b"] = FileContext(path="b")

    def test_view_tracks_later_additions(self):
        registry = FileRegistry()
        view = registry.view()
        registry.add([FileContext(path="a")])
        assert "a" in view

    def test_container_protocol(self):
        registry = FileRegistry([FileContext(path="a"), FileContext(path="b")])
        assert "a" in registry
        assert "z" not in registry
        assert list(registry) == ["a", "b"]
        assert [fc.path for fc in registry.values()] == ["a", "b"]


# ---------------------------------------------------------------------------
# PipelineContext / StageResult
# ---------------------------------------------------------------------------


class TestPipelineContext:

    def test_create_normalizes_initial_paths(self):
        ctx = PipelineContext.create("req", "/p", ["./src/a.ts", "src\\a.ts", "  ", "b.ts"])
        assert ctx.files.paths() == ["src/a.ts", "b.ts"]
        assert ctx.intent is None
        assert ctx.changes == {}

    def test_set_intent_once(self):
        ctx = PipelineContext.create("req", "/p")
        intent = Intent(description="x")
        ctx.set_intent(intent)
        assert ctx.intent is intent
        with pytest.raises(ValueError):
            ctx.set_intent(Intent(description="y"))
        assert ctx.intent is intent

    def test_add_changes_accumulates(self):
        ctx = PipelineContext.create("req", "/p")
        first = Change(operation="new_file", file_path="a", new_code_block="1")
        second = Change(operation="new_file", file_path="a", new_code_block="2")
        ctx.add_changes("a", [first])
        ctx.add_changes("a", [second])
        assert ctx.changes == {"a": [first, second]}


class TestStageResult:

    def test_defaults(self):
        result = StageResult(stage="intent", success=True)
        assert result.output == ""
        assert result.error == ""
        assert result.raw == ""
        assert result.data == {}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestLoadFiles:

    def test_reads_content_and_symbols(self, tmp_path):
        _write(tmp_path, "src/a.ts", "export function fooBar() {}\n")
        registry = FileRegistry([FileContext(path="src/a.ts")])

        skipped = load_files(registry, str(tmp_path), TreeSitterSymbolIndex())

        assert skipped == []
        assert registry.get("src/a.ts").content == "export function fooBar() {}\n"
        assert registry.get("src/a.ts").symbols == ["fooBar"]

    def test_missing_file_skipped(self, tmp_path):
        registry = FileRegistry([FileContext(path="missing.ts")])

        skipped = load_files(registry, str(tmp_path), TreeSitterSymbolIndex())

        assert skipped == ["missing.ts"]
        assert registry.get("missing.ts").content is None

    def test_loaded_files_not_reread(self, tmp_path):
        registry = FileRegistry([FileContext(path="a.py", content="cached")])
        with mock.patch("spaider.pipeline.workspace.read_file") as mock_read:
            load_files(registry, str(tmp_path), TreeSitterSymbolIndex())
        mock_read.assert_not_called()

    def test_only_requested_paths(self, tmp_path):
        _write(tmp_path, "a.py", "a = 1\n")
        _write(tmp_path, "b.py", "b = 1\n")
        registry = FileRegistry([FileContext(path="a.py"), FileContext(path="b.py")])

        load_files(registry, str(tmp_path), TreeSitterSymbolIndex(), ["b.py"])

        assert registry.get("a.py").content is None
        assert registry.get("b.py").content == "b = 1\n"


class TestGuard:

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        async def work():
            return StageResult(stage="x", success=True, output="ok")

        result = await _guard("x", work())
        assert result.success
        assert result.output == "ok"

    @pytest.mark.asyncio
    async def test_schema_failure_keeps_raw(self):
        async def work():
            raise SchemaValidationError("bad", raw="not json")

        result = await _guard("intent", work())
        assert not result.success
        assert result.stage == "intent"
        assert result.error == "bad"
        assert result.raw == "not json"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        async def work():
            raise TransportError("unreachable")

        result = await _guard("planning", work())
        assert not result.success
        assert result.error == "unreachable"


# ---------------------------------------------------------------------------
# run_pipeline
# ---------------------------------------------------------------------------


class TestRunPipelineInformational:

    @pytest.mark.asyncio
    async def test_answer_without_planning(self, tmp_path):
        _write(tmp_path, "src/a.ts", "export function fooBar() {}\n")
        ctx = PipelineContext.create("what does fooBar do?", str(tmp_path), ["src/a.ts"])
        intent = Intent(edit_mode=False, description="Explain fooBar")

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch(
                "spaider.pipeline.generate_answer", mock.AsyncMock(return_value="It returns.")
            ) as mock_answer,
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock()) as mock_plan,
            mock.patch(
                "spaider.pipeline.generate_changes_for_file", mock.AsyncMock()
            ) as mock_generate,
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert events[-1] == ("result", "It returns.")
        mock_answer.assert_awaited_once()
        mock_plan.assert_not_called()
        mock_generate.assert_not_called()
        assert ctx.intent is intent
        assert (tmp_path / "src" / "a.ts").read_text() == "export function fooBar() {}\n"

    @pytest.mark.asyncio
    async def test_intent_sees_loaded_initial_files(self, tmp_path):
        _write(tmp_path, "src/a.ts", "export function fooBar() {}\n")
        ctx = PipelineContext.create("explain", str(tmp_path), ["src/a.ts"])
        seen = {}

        async def fake_intent(client, user_prompt, files):
            seen["files"] = [(fc.path, fc.content, fc.symbols) for fc in files]
            return Intent()

        with (
            mock.patch("spaider.pipeline.analyze_intent", side_effect=fake_intent),
            mock.patch("spaider.pipeline.generate_answer", mock.AsyncMock(return_value="a")),
        ):
            await _collect(run_pipeline(_fake_client(), ctx))

        assert seen["files"] == [("src/a.ts", "export function fooBar() {}\n", ["fooBar"])]

    @pytest.mark.asyncio
    async def test_unreadable_initial_file_reported(self, tmp_path):
        ctx = PipelineContext.create("explain", str(tmp_path), ["missing.ts"])

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=Intent())),
            mock.patch("spaider.pipeline.generate_answer", mock.AsyncMock(return_value="a")),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert ("status", "Could not read missing.ts; continuing without its content") in events
        assert events[-1] == ("result", "a")


class TestRunPipelineFailures:

    @pytest.mark.asyncio
    async def test_intent_schema_failure_aborts_with_raw(self, tmp_path):
        ctx = PipelineContext.create("do it", str(tmp_path))
        error = SchemaValidationError("intent: response is not valid JSON", raw="Sure! Here...")

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(side_effect=error)),
            mock.patch("spaider.pipeline.discover") as mock_discover,
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        kind, message = events[-1]
        assert kind == "error"
        assert "Intent failed" in message
        assert "Sure! Here..." in message
        mock_discover.assert_not_called()
        assert ctx.intent is None
        assert ctx.results[-1].success is False

    @pytest.mark.asyncio
    async def test_truncated_intent_reply_becomes_error_event(self, tmp_path):
        ctx = PipelineContext.create("do it", str(tmp_path))
        completion = SimpleNamespace(
            usage=None,
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"editMode": tr'))],
        )
        llm = mock.MagicMock()
        llm.ainvoke = mock.AsyncMock(
            side_effect=openai.LengthFinishReasonError(completion=completion)
        )
        client = CompletionClient(base_url="http://test/v1", api_key="k")
        client.get_llm = mock.Mock(return_value=llm)

        events = await _collect(run_pipeline(client, ctx))

        kind, message = events[-1]
        assert kind == "error"
        assert message.startswith("Intent failed")
        assert '{"editMode": tr' in message
        assert ctx.intent is None

    @pytest.mark.asyncio
    async def test_generation_failure_writes_nothing(self, tmp_path):
        ctx = PipelineContext.create("add file", str(tmp_path))
        intent = Intent(edit_mode=True, description="Add file")
        plan = [ChangeOverview(file_path="n.ts", operation="new_file")]
        error = SchemaValidationError("changes: bad", raw="{oops")

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file", mock.AsyncMock(side_effect=error)
            ),
            mock.patch("spaider.pipeline.apply_changes", mock.AsyncMock()) as mock_apply,
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert events[-1][0] == "error"
        assert "{oops" in events[-1][1]
        mock_apply.assert_not_called()
        assert not (tmp_path / "n.ts").exists()

    @pytest.mark.asyncio
    async def test_empty_plan(self, tmp_path):
        ctx = PipelineContext.create("tweak", str(tmp_path))
        intent = Intent(edit_mode=True, description="Nothing to do")

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=[])),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file", mock.AsyncMock()
            ) as mock_generate,
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert events[-1] == ("result", "No changes needed")
        mock_generate.assert_not_called()


class TestRunPipelineEdit:

    @pytest.mark.asyncio
    async def test_full_edit_run(self, tmp_path):
        _write(tmp_path, "src/a.ts", "export function greet() { return 'hi'; }\n")
        _write(tmp_path, "src/b.ts", "export function helper() {}\n")
        _write(tmp_path, "src/old.ts", "export const legacy = 1;\n")
        ctx = PipelineContext.create("update greet", str(tmp_path), ["src/a.ts"])

        intent = Intent(edit_mode=True, description="Update greet", file_paths=["src/b.ts"])
        plan = [
            ChangeOverview(file_path="src/a.ts", overview="change greeting", operation="modify_file"),
            ChangeOverview(file_path="src/n.ts", overview="new module", operation="new_file"),
            ChangeOverview(file_path="src/old.ts", overview="unused", operation="delete_file"),
        ]
        generated = {
            "src/a.ts": [
                Change(
                    operation="modify_file",
                    file_path="src/a.ts",
                    modification_type="replace_block",
                    old_code_block="'hi'",
                    new_code_block="'hello'",
                )
            ],
            "src/n.ts": [
                Change(operation="new_file", file_path="src/n.ts", new_code_block="export {};")
            ],
        }
        client = _fake_client("export function greet() { return 'hello'; }")

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file",
                side_effect=_generated_for(generated),
            ) as mock_generate,
        ):
            events = await _collect(run_pipeline(client, ctx))

        # Discovery added the hinted file with its content
        assert ctx.files.paths() == ["src/a.ts", "src/b.ts"]
        assert ctx.files.get("src/b.ts").symbols == ["helper"]

        # Deletions never reach the generator
        generated_paths = [c.args[3].file_path for c in mock_generate.call_args_list]
        assert generated_paths == ["src/a.ts", "src/n.ts"]

        # Applied in plan order
        assert list(ctx.changes) == ["src/a.ts", "src/n.ts", "src/old.ts"]
        assert ctx.changes["src/old.ts"][0].modification_type == "none"
        outputs = [m for kind, m in events if kind == "output"]
        assert outputs == [
            "Updated (1 modifications): src/a.ts",
            "Created: src/n.ts",
            "Deleted: src/old.ts",
        ]

        assert (tmp_path / "src/a.ts").read_text() == "export function greet() { return 'hello'; }"
        assert (tmp_path / "src/n.ts").read_text() == "export {};"
        assert not (tmp_path / "src/old.ts").exists()
        client.complete.assert_awaited_once()

        kind, summary = events[-1]
        assert kind == "result"
        assert "Update greet" in summary
        assert "src/n.ts" in summary

    @pytest.mark.asyncio
    async def test_generator_gets_disk_content_for_undiscovered_modify(self, tmp_path):
        _write(tmp_path, "lib/util.py", "def util():\n    pass\n")
        ctx = PipelineContext.create("edit util", str(tmp_path))
        intent = Intent(edit_mode=True, description="Edit")
        plan = [ChangeOverview(file_path="lib/util.py", operation="modify_file")]
        seen = {}

        async def fake_generate(client, intent, file, overview):
            seen["content"] = file.content
            return []

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.discover", return_value=[]),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch("spaider.pipeline.generate_changes_for_file", side_effect=fake_generate),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert seen["content"] == "def util():\n    pass\n"
        assert ("status", "No changes generated for lib/util.py; skipping") in events
        assert not [kind for kind, _ in events if kind == "error"]

    @pytest.mark.asyncio
    async def test_rejected_file_does_not_stop_others(self, tmp_path):
        ctx = PipelineContext.create("two files", str(tmp_path))
        intent = Intent(edit_mode=True, description="Two files")
        plan = [
            ChangeOverview(file_path="gone.ts", operation="delete_file"),
            ChangeOverview(file_path="n.ts", operation="new_file"),
        ]
        generated = {"n.ts": [Change(operation="new_file", file_path="n.ts", new_code_block="n")]}

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file",
                side_effect=_generated_for(generated),
            ),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        errors = [m for kind, m in events if kind == "error"]
        assert len(errors) == 1
        assert errors[0].startswith("Rejected gone.ts")
        assert (tmp_path / "n.ts").read_text() == "n"
        assert "Files rejected" in events[-1][1]

    @pytest.mark.asyncio
    async def test_dry_run(self, tmp_path):
        ctx = PipelineContext.create("add", str(tmp_path))
        intent = Intent(edit_mode=True, description="Add")
        plan = [ChangeOverview(file_path="n.ts", operation="new_file")]
        generated = {"n.ts": [Change(operation="new_file", file_path="n.ts", new_code_block="n")]}

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file",
                side_effect=_generated_for(generated),
            ),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx, dry_run=True))

        assert ("output", "Created: n.ts") in events
        assert not (tmp_path / "n.ts").exists()
        assert ctx.outcomes[0].content == "n"

    @pytest.mark.asyncio
    async def test_batch_generation(self, tmp_path):
        ctx = PipelineContext.create("batch", str(tmp_path))
        intent = Intent(edit_mode=True, description="Batch")
        plan = [
            ChangeOverview(file_path="b.ts", operation="new_file"),
            ChangeOverview(file_path="a.ts", operation="new_file"),
        ]
        batch = [
            Change(operation="new_file", file_path="a.ts", new_code_block="a"),
            Change(operation="new_file", file_path="stray.ts", new_code_block="s"),
            Change(operation="new_file", file_path="b.ts", new_code_block="b"),
        ]

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes", mock.AsyncMock(return_value=batch)
            ) as mock_batch,
            mock.patch(
                "spaider.pipeline.generate_changes_for_file", mock.AsyncMock()
            ) as mock_single,
        ):
            await _collect(run_pipeline(_fake_client(), ctx, batch=True))

        mock_batch.assert_awaited_once()
        mock_single.assert_not_called()
        assert list(ctx.changes) == ["b.ts", "a.ts"]
        assert not (tmp_path / "stray.ts").exists()
        assert (tmp_path / "a.ts").read_text() == "a"


class TestRunPipelineEmptyAndRejectedPlans:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch", [False, True])
    async def test_no_generated_changes_skips_file(self, tmp_path, batch):
        _write(tmp_path, "a.ts", "export const a = 1;\n")
        ctx = PipelineContext.create("tweak", str(tmp_path))
        intent = Intent(edit_mode=True, description="Tweak a")
        plan = [ChangeOverview(file_path="a.ts", operation="modify_file")]

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.discover", return_value=[]),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch("spaider.pipeline.generate_changes", mock.AsyncMock(return_value=[])),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file", mock.AsyncMock(return_value=[])
            ),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx, batch=batch))

        kinds = [kind for kind, _ in events]
        assert ("status", "No changes generated for a.ts; skipping") in events
        assert "error" not in kinds
        assert kinds[-1] == "result"
        assert ctx.changes == {}
        assert ctx.outcomes == []
        assert (tmp_path / "a.ts").read_text() == "export const a = 1;\n"

    @pytest.mark.asyncio
    async def test_planned_path_outside_root_rejected_alone(self, tmp_path):
        root = tmp_path / "project"
        root.mkdir()
        ctx = PipelineContext.create("two files", str(root))
        intent = Intent(edit_mode=True, description="Two files")
        plan = [
            ChangeOverview(file_path="../outside.ts", operation="modify_file"),
            ChangeOverview(file_path="n.ts", operation="new_file"),
        ]
        generated = {"n.ts": [Change(operation="new_file", file_path="n.ts", new_code_block="n")]}

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.discover", return_value=[]),
            mock.patch("spaider.pipeline.prepare_changes", mock.AsyncMock(return_value=plan)),
            mock.patch(
                "spaider.pipeline.generate_changes_for_file",
                side_effect=_generated_for(generated),
            ) as mock_generate,
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert mock_generate.call_count == 1
        errors = [m for kind, m in events if kind == "error"]
        assert len(errors) == 1
        assert errors[0].startswith("Rejected ../outside.ts")
        assert ("output", "Created: n.ts") in events
        assert (root / "n.ts").read_text() == "n"
        assert not (tmp_path / "outside.ts").exists()


class TestRunPipelineAnswerExcerpts:

    @pytest.mark.asyncio
    async def test_large_file_replaced_by_excerpt(self, tmp_path):
        _write(tmp_path, "big.py", "x = 1\n" * 20)
        _write(tmp_path, "small.py", "y = 2\n")
        ctx = PipelineContext.create("explain", str(tmp_path), ["big.py", "small.py"])
        intent = Intent(description="Explain x")
        seen = {}

        async def fake_answer(client, intent, files):
            seen["files"] = [(fc.path, fc.content) for fc in files]
            return "answer"

        with (
            mock.patch("spaider.pipeline.config.PREVIEW_CHARS", 50),
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch("spaider.pipeline.discover", return_value=[]),
            mock.patch(
                "spaider.pipeline.extract_relevant_code_blocks",
                mock.AsyncMock(return_value="x = 1"),
            ) as mock_extract,
            mock.patch("spaider.pipeline.generate_answer", side_effect=fake_answer),
        ):
            events = await _collect(run_pipeline(_fake_client(), ctx))

        assert events[-1] == ("result", "answer")
        mock_extract.assert_awaited_once()
        assert mock_extract.call_args.args[2].path == "big.py"
        assert seen["files"] == [("big.py", "x = 1"), ("small.py", "y = 2\n")]
        # The registry keeps the full content
        assert ctx.files.get("big.py").content == "x = 1\n" * 20

    @pytest.mark.asyncio
    async def test_nothing_relevant_keeps_full_content(self, tmp_path):
        _write(tmp_path, "big.py", "x = 1\n" * 20)
        ctx = PipelineContext.create("explain", str(tmp_path), ["big.py"])
        seen = {}

        async def fake_answer(client, intent, files):
            seen["content"] = files[0].content
            return "answer"

        with (
            mock.patch("spaider.pipeline.config.PREVIEW_CHARS", 50),
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=Intent())),
            mock.patch("spaider.pipeline.discover", return_value=[]),
            mock.patch(
                "spaider.pipeline.extract_relevant_code_blocks", mock.AsyncMock(return_value=None)
            ),
            mock.patch("spaider.pipeline.generate_answer", side_effect=fake_answer),
        ):
            await _collect(run_pipeline(_fake_client(), ctx))

        assert seen["content"] == "x = 1\n" * 20


class TestRunPipelineDiscoveryFilter:

    @pytest.mark.asyncio
    async def test_filter_narrows_discovered_delta(self, tmp_path):
        _write(tmp_path, "a.ts", "export const a = 1;\n")
        _write(tmp_path, "b.ts", "export const b = 1;\n")
        ctx = PipelineContext.create("explain", str(tmp_path))
        intent = Intent(description="Explain", file_paths=["a.ts", "b.ts"])

        with (
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch(
                "spaider.pipeline.filter_relevant_file_paths",
                mock.AsyncMock(return_value=["b.ts"]),
            ) as mock_filter,
            mock.patch("spaider.pipeline.generate_answer", mock.AsyncMock(return_value="ok")),
        ):
            await _collect(run_pipeline(_fake_client(), ctx, filter_discovered=True))

        assert mock_filter.call_args.args[2] == ["a.ts", "b.ts"]
        assert ctx.files.paths() == ["b.ts"]
        assert ctx.files.get("b.ts").content == "export const b = 1;\n"

    @pytest.mark.asyncio
    async def test_filter_off_by_default(self, tmp_path):
        _write(tmp_path, "a.ts", "export const a = 1;\n")
        ctx = PipelineContext.create("explain", str(tmp_path))
        intent = Intent(description="Explain", file_paths=["a.ts"])

        with (
            mock.patch("spaider.pipeline.config.FILTER_DISCOVERED", False),
            mock.patch("spaider.pipeline.analyze_intent", mock.AsyncMock(return_value=intent)),
            mock.patch(
                "spaider.pipeline.filter_relevant_file_paths", mock.AsyncMock()
            ) as mock_filter,
            mock.patch("spaider.pipeline.generate_answer", mock.AsyncMock(return_value="ok")),
        ):
            await _collect(run_pipeline(_fake_client(), ctx))

        mock_filter.assert_not_called()
        assert ctx.files.paths() == ["a.ts"]
