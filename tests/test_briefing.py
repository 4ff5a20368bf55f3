from services.execution.models import NodeOutput
from services.output.briefing import (
    TOTAL_BUDGET,
    aggregate_upstream_node_text,
    build_morning_briefing,
    format_eastern_time,
    format_usd,
    with_total_budget,
)
from services.output.briefing_quality import (
    clamp_section_text,
    extract_inspirational_quote,
    extract_nba_final_scores,
    is_valid_inspirational_quote,
    parse_score_line,
)
from helpers import make_mission, node

PRICES = {
    "prices": [{"baseAsset": "ETH", "price": 3125.5}, {"baseAsset": "SUI", "price": 1.2345}],
    "checkedAtIso": "2026-03-02T13:05:00Z",
}


def _briefing_mission():
    return make_mission([
        node("t", "schedule-trigger", "Every morning"),
        node("nba", "web-search", "NBA scores", query="nba final scores last night"),
        node("quote", "web-search", "Daily quote"),
        node("coin", "coinbase", "Crypto prices", assets=["ETH", "SUI"]),
        node("tech", "web-search", "Tech headline"),
        node("out", "telegram-output", "Send"),
    ])


def _briefing_outputs(nba_text="Lakers 112 - 108 Celtics (Final)"):
    return {
        "t": NodeOutput(ok=True, text="Due."),
        "nba": NodeOutput(ok=True, text=nba_text, data={"results": []}),
        "quote": NodeOutput(ok=True, text='"The only way to do great work is to love what you do." - Steve Jobs'),
        "coin": NodeOutput(ok=True, text="ETH: $3,125.50", data=PRICES),
        "tech": NodeOutput(ok=True, text="", data={"results": [{
            "title": "Chipmaker unveils a faster AI accelerator",
            "snippet": "The new part doubles training throughput. It ships in May. Analysts expect price cuts.",
        }]}),
    }


def test_parse_score_line_normalizes_final_scores():
    assert parse_score_line("Lakers 112 - 108 Celtics (Final)") == "Lakers 112 - 108 Celtics"
    assert parse_score_line("Lakers 45 - 108 Celtics") is None
    assert parse_score_line("Scores are not in yet") is None


def test_extract_scores_dedupes_and_limits():
    text = "\n".join([
        "Lakers 112 - 108 Celtics (Final)",
        "Lakers 112 - 108 Celtics Final",
        "Knicks 99 - 101 Heat",
        "Suns 120 - 118 Nuggets | read more",
        "Bulls 90 - 88 Magic",
    ])
    assert extract_nba_final_scores(text, 3) == [
        "Lakers 112 - 108 Celtics",
        "Knicks 99 - 101 Heat",
        "Suns 120 - 118 Nuggets",
    ]


def test_quote_validation_rejects_listicles():
    assert is_valid_inspirational_quote("The only way to do great work is to love what you do.", "Steve Jobs")
    assert not is_valid_inspirational_quote("Top 10 quotes for a productive Monday morning", "Blog Staff")
    assert not is_valid_inspirational_quote("Too short", "Someone")
    assert extract_inspirational_quote(NodeOutput(ok=True, text="no quotes here")) is None


def test_usd_and_eastern_time_formatting():
    assert format_usd(3125.5) == "$3,125.50"
    assert format_usd(1.2345) == "$1.2345"
    assert format_usd(0.5) == "$0.50"
    assert format_usd("n/a") == "unavailable"
    assert format_eastern_time("2026-03-02T13:05:00Z") == "Mar 2, 8:05 AM"
    assert format_eastern_time("yesterday") == "unavailable"


def test_briefing_renders_every_section():
    text = build_morning_briefing(_briefing_mission(), _briefing_outputs())
    assert text.split("\n\n")[0] == "**NBA RECAP**\n- Lakers 112 - 108 Celtics"
    assert '"The only way to do great work is to love what you do." - Steve Jobs' in text
    assert "ETH: $3,125.50 | SUI: $1.2345\nUpdated: Mar 2, 8:05 AM ET" in text
    assert "Headline: Chipmaker unveils a faster AI accelerator" in text
    assert "Why it matters: The new part doubles training throughput. It ships in May." in text


def test_briefing_placeholders_when_sources_are_weak():
    outputs = _briefing_outputs(nba_text="Lakers 45 - 108 Celtics")
    outputs["quote"] = NodeOutput(ok=True, text="Read more inspirational quotes on our blog")
    text = build_morning_briefing(_briefing_mission(), outputs)
    assert "No clean final NBA scores available from current sources." in text
    assert "No verified inspirational quote available from current sources." in text


def test_briefing_stays_within_total_budget():
    noisy = "\n".join(f"Team{i} {100 + i} - {90 + i} Rivals{i} final " + "x" * 300 for i in range(40))
    outputs = _briefing_outputs(nba_text=noisy)
    outputs["quote"] = NodeOutput(ok=True, text="y" * 5000)
    text = build_morning_briefing(_briefing_mission(), outputs)
    assert len(text) <= TOTAL_BUDGET
    for header in ("**NBA RECAP**", "**INSPIRATIONAL QUOTE**", "**CRYPTO PRICES (USD)**", "**TOP TECH STORY**"):
        assert header in text


def test_total_budget_clamps_overflowing_section():
    kept = with_total_budget(["a" * 1500, "b" * 1500, "c" * 1500])
    assert len(kept) == 2
    assert len("\n\n".join(kept)) <= TOTAL_BUDGET
    assert kept[1].endswith("…")


def test_clamped_section_ends_on_a_whole_word():
    text = " ".join(f"word{i}" for i in range(100))
    clamped = clamp_section_text(text, 60)
    words = clamped[:-1].split()
    assert clamped.endswith("…")
    assert len(clamped) <= 60
    assert words == text.split()[:len(words)]


def test_single_overlong_word_is_cut_hard():
    clamped = clamp_section_text("z" * 500, 80)
    assert clamped == "z" * 79 + "…"


def test_total_budget_truncates_between_words():
    sections = [" ".join([name] * 300) for name in ("alpha", "bravo", "charlie")]
    kept = with_total_budget(sections)
    assert len(kept) == 2
    assert len("\n\n".join(kept)) <= TOTAL_BUDGET
    assert kept[1].endswith("…")
    assert set(kept[1][:-1].split()) == {"bravo"}


def test_non_briefing_mission_is_ignored():
    mission = make_mission([node("coin", "coinbase", "Prices"), node("out", "novachat-output")])
    assert build_morning_briefing(mission, {"coin": NodeOutput(ok=True, data=PRICES)}) is None


def test_aggregate_skips_triggers_outputs_and_failures():
    mission = make_mission([
        node("t", "manual-trigger", "Start"),
        node("a", "web-search", "Search"),
        node("b", "http-request", "Broken"),
        node("c", "ai-summarize", "Summary"),
        node("o", "novachat-output", "Send"),
    ])
    outputs = {
        "t": NodeOutput(ok=True, text="Triggered"),
        "a": NodeOutput(ok=True, text="search text"),
        "b": NodeOutput(ok=False, error="HTTP 500"),
        "c": NodeOutput(ok=True, text="z" * 1000),
        "o": NodeOutput(ok=True, text="sent"),
    }
    aggregated = aggregate_upstream_node_text(mission, outputs, max_chars=2200, per_node_max_chars=360)
    blocks = aggregated.split("\n\n")
    assert blocks[0] == "[Search]\nsearch text"
    assert blocks[1].startswith("[Summary]\nzzz")
    assert len(blocks[1]) <= len("[Summary]\n") + 360
    assert len(blocks) == 2
