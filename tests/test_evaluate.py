"""Tests for the post-response evaluator runner."""

from unittest.mock import AsyncMock

import pytest

from agent_runtime.types import Evaluator, Plugin, State


async def _invalid(runtime, message, state=None):
    return False


async def _validator_raises(runtime, message, state=None):
    raise RuntimeError("bad validator")


@pytest.fixture
def handlers():
    return {
        "first": AsyncMock(side_effect=RuntimeError("evaluator broke")),
        "second": AsyncMock(),
        "responded_only": AsyncMock(),
        "invalid": AsyncMock(),
        "bad_validator": AsyncMock(),
    }


@pytest.fixture
def eval_runtime(make_runtime, handlers):
    plugin = Plugin(
        name="test",
        evaluators=[
            Evaluator("FIRST", "raises", handlers["first"]),
            Evaluator("SECOND", "records", handlers["second"]),
            Evaluator("RESPONDED_ONLY", "only after a reply", handlers["responded_only"], always_run=False),
            Evaluator("INVALID", "never valid", handlers["invalid"], validate=_invalid),
            Evaluator("BAD_VALIDATOR", "validator raises", handlers["bad_validator"], validate=_validator_raises),
        ],
    )
    return make_runtime(plugins=[plugin])


@pytest.mark.asyncio
async def test_failures_are_isolated_and_ignored_messages_skip_opt_outs(eval_runtime, handlers, make_message):
    message = make_message("hello")
    ran = await eval_runtime.evaluate(message, State(), did_respond=False)

    assert ran == ["FIRST", "SECOND"]
    handlers["second"].assert_awaited_once()
    assert handlers["second"].await_args.args[3] == {"did_respond": False, "responses": []}
    handlers["responded_only"].assert_not_awaited()
    handlers["invalid"].assert_not_awaited()
    handlers["bad_validator"].assert_not_awaited()


@pytest.mark.asyncio
async def test_responded_messages_run_every_valid_evaluator(eval_runtime, handlers, make_message):
    responses = [make_message("reply")]
    ran = await eval_runtime.evaluate(make_message("hello"), State(), True, None, responses)

    assert ran == ["FIRST", "SECOND", "RESPONDED_ONLY"]
    options = handlers["responded_only"].await_args.args[3]
    assert options == {"did_respond": True, "responses": responses}
