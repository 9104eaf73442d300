import json

import pytest
from sqlalchemy import func, select

from app.core.exceptions import UpstreamError, UpstreamTimeoutError, ValidationError
from app.models.preference import TravelHistory, UserPreference
from app.schemas.chat import ChatHistoryMessage, ExtractionResult
from app.services.planner_service import (
    CLARIFICATION_REPLY,
    PlannerService,
    build_plan_prompt,
    derive_conversation_title,
    find_first_json_object,
    format_conversation_history,
    parse_extraction,
    record_travel_interaction,
)
from app.services.preference_service import PreferenceService

YUNNAN = {
    "isComplete": True,
    "destination": "云南",
    "days": "7",
    "people": "3",
    "budget": "8000",
    "reply": None,
}


def extraction(**overrides):
    data = dict(YUNNAN, **overrides)
    return json.dumps(data, ensure_ascii=False)


def test_find_first_json_object_with_surrounding_prose():
    text = '好的，结果如下：\n```json\n{"a": {"b": 1}, "c": "含有 } 的字符串"}\n```\n其他 {"x": 2}'
    span = find_first_json_object(text)
    assert json.loads(span) == {"a": {"b": 1}, "c": "含有 } 的字符串"}


def test_find_first_json_object_without_object():
    assert find_first_json_object("没有任何结构化内容") is None
    assert find_first_json_object('{"unterminated": 1') is None
    assert find_first_json_object("") is None


def test_parse_extraction_complete():
    result = parse_extraction("提取结果：" + extraction())
    assert result.is_complete
    assert (result.destination, result.days, result.people, result.budget) == ("云南", "7", "3", "8000")
    assert result.reply is None


def test_parse_extraction_incomplete_keeps_model_reply():
    content = extraction(isComplete=False, days=None, budget="null", reply="请问您计划玩几天？预算多少？")
    result = parse_extraction(content)
    assert not result.is_complete
    assert result.destination == "云南"
    assert result.days is None
    assert result.budget is None
    assert result.reply == "请问您计划玩几天？预算多少？"


def test_parse_extraction_complete_flag_with_missing_field_is_incomplete():
    result = parse_extraction(extraction(people=None))
    assert not result.is_complete
    assert result.reply == CLARIFICATION_REPLY


@pytest.mark.parametrize("content", ["我不太明白", "{not json}", "[1, 2, 3]", ""])
def test_parse_extraction_unparseable_falls_back(content):
    result = parse_extraction(content)
    assert not result.is_complete
    assert result.reply == CLARIFICATION_REPLY


def test_derive_conversation_title():
    assert derive_conversation_title("去云南") == "去云南"
    long_message = "我计划和家人3人去云南旅游，时间是7天，预算8000元"
    assert derive_conversation_title(long_message) == long_message[:20] + "..."


def test_format_conversation_history_skips_placeholders_and_current_message():
    messages = [
        ChatHistoryMessage(sender="user", content="我想去云南"),
        ChatHistoryMessage(sender="assistant", content="请问几天？"),
        ChatHistoryMessage(sender="assistant", content="思考中", is_loading=True),
        ChatHistoryMessage(sender="assistant", content="出错了", is_error=True),
        ChatHistoryMessage(sender="user", content="7天"),
    ]
    assert format_conversation_history(messages, "7天") == "用户: 我想去云南\n助手: 请问几天？"
    assert format_conversation_history(None, "7天") == ""


def test_build_plan_prompt_includes_personalization_and_units():
    info = ExtractionResult(is_complete=True, destination="云南", days="7天", people="3", budget="8000")
    prompt = build_plan_prompt(info, "\n\n根据用户历史偏好进行个性化推荐：\n用户偏好：\n- 偏爱目的地: 云南(权重:2)")

    assert "目的地: 云南" in prompt
    assert "旅游时间: 7天" in prompt
    assert "游玩人数: 3人" in prompt
    assert "预算: 8000元" in prompt
    assert "偏爱目的地: 云南(权重:2)" in prompt
    assert "个性化" not in build_plan_prompt(info)


async def test_chat_rejects_blank_message_without_calling_llm(fake_llm):
    planner = PlannerService(fake_llm)
    for message in ("", "   ", None):
        with pytest.raises(ValidationError):
            await planner.chat(message)
    assert fake_llm.calls == []


async def test_chat_incomplete_returns_clarification_only(fake_llm):
    fake_llm.queue(extraction(isComplete=False, days=None, reply="请问您打算玩几天？"))
    planner = PlannerService(fake_llm)

    result = await planner.chat("我想去云南", conversation_id="c1")

    assert result.reply == "请问您打算玩几天？"
    assert result.conversation_id == "c1"
    assert not result.plan_generated
    assert len(fake_llm.calls) == 1


async def test_chat_complete_generates_plan_with_two_calls(fake_llm):
    fake_llm.queue(extraction(), "# 云南七日游\n...")
    planner = PlannerService(fake_llm)

    result = await planner.chat("我计划和家人3人去云南旅游，时间是7天，预算8000元", conversation_id=42)

    assert result.reply == "# 云南七日游\n..."
    assert result.conversation_id == 42
    assert result.plan_generated
    assert result.travel_info.destination == "云南"

    extract_call, plan_call = fake_llm.calls
    assert extract_call["temperature"] == 0.3
    assert extract_call["max_tokens"] == 1000
    assert plan_call["temperature"] == 0.7
    assert plan_call["max_tokens"] == 2000
    assert "个性化" not in plan_call["messages"][1]["content"]


async def test_chat_includes_history_in_extraction(fake_llm):
    fake_llm.queue(extraction(isComplete=False, budget=None, reply="预算是多少？"))
    planner = PlannerService(fake_llm)
    history = [
        ChatHistoryMessage(sender="user", content="我想去云南玩7天"),
        ChatHistoryMessage(sender="assistant", content="几个人？"),
    ]

    await planner.chat("3个人", messages=history)

    user_content = fake_llm.calls[0]["messages"][1]["content"]
    assert "用户: 我想去云南玩7天\n助手: 几个人？\n\n用户: 3个人" in user_content


async def test_chat_personalizes_for_known_user(fake_llm, db, auth_service):
    user, _ = await auth_service.register("alice", "alice@example.com", "secret123")
    await PreferenceService(db).save_preference(user.id, "destination", "三亚", 3.0)
    fake_llm.queue(extraction(), "规划内容")
    planner = PlannerService(fake_llm, db=db)

    await planner.chat("我计划和家人3人去云南旅游，时间是7天，预算8000元", user=user)

    plan_prompt = fake_llm.calls[1]["messages"][1]["content"]
    assert "根据用户历史偏好进行个性化推荐" in plan_prompt
    assert "三亚(权重:3)" in plan_prompt


@pytest.mark.parametrize("error", [UpstreamError("大模型 API错误: 500"), UpstreamTimeoutError()])
async def test_chat_propagates_upstream_failures(fake_llm, error):
    fake_llm.queue(extraction(), error)
    planner = PlannerService(fake_llm)

    with pytest.raises(type(error)):
        await planner.chat("我计划和家人3人去云南旅游，时间是7天，预算8000元")


async def test_record_travel_interaction_saves_history_and_preferences(session_factory, auth_service):
    user, _ = await auth_service.register("alice", "alice@example.com", "secret123")
    info = ExtractionResult(is_complete=True, destination="云南", days="7", people="3", budget="8000")

    await record_travel_interaction(session_factory, user.id, info, "# 云南七日游")

    async with session_factory() as db:
        history = (await db.execute(select(TravelHistory))).scalars().all()
        pref_count = await db.scalar(select(func.count()).select_from(UserPreference))
    assert len(history) == 1
    assert history[0].destination == "云南"
    assert history[0].days == 7
    assert history[0].travel_plan == "# 云南七日游"
    assert pref_count == 4


async def test_record_travel_interaction_logs_instead_of_raising(session_factory, caplog):
    info = ExtractionResult(is_complete=True, destination="云南", days="7", people="3", budget="8000")

    # 用户不存在时外键约束失败，只记录日志
    await record_travel_interaction(session_factory, 9999, info, "规划")

    assert "保存旅游历史失败" in caplog.text
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(TravelHistory)) == 0


async def test_personalization_respects_configured_limits(fake_llm, db, auth_service):
    user, _ = await auth_service.register("alice", "alice@example.com", "secret123")
    prefs = PreferenceService(db)
    for value, weight in (("云南", 3.0), ("三亚", 2.0)):
        await prefs.save_preference(user.id, "destination", value, weight)
    for destination in ("桂林", "厦门"):
        await prefs.save_travel_history(user.id, {"destination": destination, "days": 3, "people": 2, "budget": 2000})
    fake_llm.queue(extraction(), "规划内容")
    planner = PlannerService(fake_llm, db=db, top_n=1, history_count=1)

    await planner.chat("我计划和家人3人去云南旅游，时间是7天，预算8000元", user=user)

    plan_prompt = fake_llm.calls[1]["messages"][1]["content"]
    assert "- 偏爱目的地: 云南(权重:3)\n" in plan_prompt
    assert "三亚" not in plan_prompt
    assert "1. 厦门 (3天, 2人, 预算2000元)" in plan_prompt
    assert "桂林" not in plan_prompt
