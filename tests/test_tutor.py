from __future__ import annotations

import json

import pytest

from ernesto_tutor.app.config import Settings
from ernesto_tutor.app.errors import InvalidInput, UpstreamFailure
from ernesto_tutor.app.llm_client import InlineImage
from ernesto_tutor.app.retrieval import NO_EXCERPT_TEXT, select_matches
from ernesto_tutor.app.tutor import PHOTO_INSTRUCTION, answer_question, build_user_prompt
from tests._fixtures.stubs import RecordingCompletion, StubRetriever

SCENARIO = "Comparer W260 vs W320 pour fermentation 48h au froid"


def _answer(envelope: dict, text: str = "Diagnostic : ok.") -> str:
    return f"{text}\n<GRAPH_JSON>{json.dumps(envelope)}</GRAPH_JSON>"


def test_empty_message_is_rejected(settings: Settings) -> None:
    with pytest.raises(InvalidInput):
        answer_question("   ", settings, complete=RecordingCompletion(), retrieve=StubRetriever())


def test_no_relevant_excerpt_scenario(settings: Settings) -> None:
    low = select_matches([{"content": "x", "similarity": 0.1, "document_id": "d", "chunk_index": 0}])
    complete = RecordingCompletion(_answer({"title": "T"}))

    result = answer_question("Levain trop acide ?", settings, complete=complete, retrieve=StubRetriever(low))

    assert NO_EXCERPT_TEXT in complete.calls[0]["user_prompt"]
    assert result["retrieval"] == {"used_count": 0, "top": []}


def test_excerpts_are_placed_in_prompt(settings: Settings) -> None:
    matches = [{"content": "Le froid ralentit la levure.", "similarity": 0.8, "document_id": "d1", "chunk_index": 2}]
    complete = RecordingCompletion(_answer({"title": "T"}))

    result = answer_question("Pourquoi 48h au frigo ?", settings, complete=complete, retrieve=StubRetriever(matches))

    prompt = complete.calls[0]["user_prompt"]
    assert "EXTRAIT #1 (sim=0.80):\nLe froid ralentit la levure." in prompt
    assert result["retrieval"]["used_count"] == 1
    assert result["retrieval"]["top"] == [{"similarity": 0.8, "source_id": "d1", "chunk_index": 2}]


def test_deep_scenario_synthesizes_missing_charts(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "Farines", "charts": []}, "Réponse détaillée."))

    result = answer_question(SCENARIO, settings, mode="deep", complete=complete, retrieve=StubRetriever())

    assert result["narrative_text"] == "Réponse détaillée."
    assert [c["type"] for c in result["envelope"]["charts"]] == ["radar", "timeline", "bar"]
    assert "MODE APPROFONDIE" in complete.calls[0]["system_prompt"]
    assert len(complete.calls) == 1


def test_quick_mode_keeps_model_envelope(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "Court", "charts": []}))

    result = answer_question(SCENARIO, settings, mode="quick", complete=complete, retrieve=StubRetriever())

    assert result["envelope"]["charts"] == []
    assert "MODE VITE" in complete.calls[0]["system_prompt"]


def test_missing_block_costs_exactly_one_extra_call(settings: Settings) -> None:
    complete = RecordingCompletion("Pas de bloc ici.", json.dumps({"title": "Réparé"}))

    result = answer_question("Sole trop chaude ?", settings, complete=complete, retrieve=StubRetriever())

    assert len(complete.calls) == 2
    assert complete.calls[1]["json_only"] is True
    assert result["narrative_text"] == "Pas de bloc ici."
    assert result["envelope"]["title"] == "Réparé"


def test_unrecoverable_envelope_is_not_an_error(settings: Settings) -> None:
    complete = RecordingCompletion("Texte.", "pas du json")

    result = answer_question("Sole trop chaude ?", settings, complete=complete, retrieve=StubRetriever())

    assert result["envelope"]["title"] == "Synthèse"


def test_completion_failure_propagates(settings: Settings) -> None:
    complete = RecordingCompletion(RuntimeError("quota exceeded"))

    with pytest.raises(UpstreamFailure, match="quota exceeded"):
        answer_question("Question ?", settings, complete=complete, retrieve=StubRetriever())


def test_image_is_forwarded_with_instruction(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "Photo"}))
    image = InlineImage(data=b"\xff\xd8jpeg", mime_type="image/jpeg")

    result = answer_question("Regarde ma pizza", settings, image=image, complete=complete, retrieve=StubRetriever())

    assert complete.calls[0]["image"] == image
    assert complete.calls[0]["image_instruction"] == PHOTO_INSTRUCTION
    assert result["vision"] == {"received_image": True}


def test_without_image_no_photo_instruction(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "T"}))

    result = answer_question("Question ?", settings, complete=complete, retrieve=StubRetriever())

    assert "image" not in complete.calls[0]
    assert result["vision"] == {"received_image": False}


def test_retrieval_can_be_disabled(settings: Settings) -> None:
    retriever = StubRetriever()
    complete = RecordingCompletion(_answer({"title": "T"}))
    disabled = settings.model_copy(update={"retrieval_enabled": False})

    result = answer_question("Question ?", disabled, complete=complete, retrieve=retriever)

    assert retriever.queries == []
    assert result["retrieval"] is None
    assert NO_EXCERPT_TEXT in complete.calls[0]["user_prompt"]


def test_user_prompt_sections() -> None:
    prompt = build_user_prompt("Ma question", "EXTRAITS", context_text=None, is_first_turn=True)

    assert prompt.startswith("DOCUMENTS EPPPN / LIVRES (extraits) :\nEXTRAITS")
    assert "Contexte utilisateur (optionnel) :\n(non fourni)" in prompt
    assert "PREMIER ÉCHANGE" in prompt
    assert prompt.endswith("Question :\nMa question")

    follow_up = build_user_prompt("Q", "E", context_text="Four à bois, 450 °C")
    assert "Four à bois, 450 °C" in follow_up
    assert "PREMIER ÉCHANGE" not in follow_up
