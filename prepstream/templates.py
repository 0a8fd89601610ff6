# prepstream/templates.py
# Procedural question generator: instant, offline, never fails.
# Templates are keyed by subject; each declares a difficulty level and a
# generator that fills numbers/facts into a fixed question shape with the
# correct option authored at index 0.

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from prepstream.schemas import Filters, Origin, Question, new_question_id

FALLBACK_SUBJECT = "Physics"


@dataclass(frozen=True)
class RawTemplateQuestion:
    text: str
    options: Tuple[str, str, str, str]
    correct: int
    solution: str


@dataclass(frozen=True)
class QuestionTemplate:
    level: int
    gen: Callable[[random.Random], RawTemplateQuestion]


def _num(value: float, places: int = 1) -> str:
    # 2.0 -> "2", 2.50 -> "2.5"
    return f"{round(value, places):g}"


def _fixed(value: float, places: int = 3) -> str:
    return f"{value:.{places}f}"


def _pick(rng: random.Random, items: Sequence[RawTemplateQuestion]) -> RawTemplateQuestion:
    return items[rng.randrange(len(items))]


# ============================================================
# Physics
# ============================================================

def _kinematics(rng: random.Random) -> RawTemplateQuestion:
    u, a, t = rng.randint(5, 20), rng.randint(2, 10), rng.randint(2, 5)
    v = u + a * t
    return RawTemplateQuestion(
        text=(f"A particle starts with an initial velocity of {u} m/s and accelerates at "
              f"{a} m/s² for {t} seconds. What is its final velocity?"),
        options=(f"{v} m/s", f"{v + rng.randint(1, 5)} m/s", f"{v - rng.randint(1, 5)} m/s", f"{u + a} m/s"),
        correct=0,
        solution=f"Using v = u + at: v = {u} + ({a} × {t}) = {v} m/s.",
    )


def _newton_second_law(rng: random.Random) -> RawTemplateQuestion:
    m, f = rng.randint(2, 10), rng.randint(10, 50)
    a = f / m
    return RawTemplateQuestion(
        text=f"A force of {f} N is applied to a body of mass {m} kg. What is the acceleration produced?",
        options=(f"{_num(a)} m/s²", f"{_num(a * 2)} m/s²", f"{_num(a / 2)} m/s²", f"{_num(f + m)} m/s²"),
        correct=0,
        solution=f"Newton's Second Law F=ma -> a=F/m -> a={f}/{m} = {_num(a, 2)} m/s².",
    )


def _potential_energy(rng: random.Random) -> RawTemplateQuestion:
    m, h = rng.randint(1, 5), rng.randint(5, 20)
    pe = m * 10 * h
    return RawTemplateQuestion(
        text=f"A body of mass {m} kg is raised to a height of {h} m. What is its potential energy? (g = 10 m/s²)",
        options=(f"{pe} J", f"{pe + 50} J", f"{pe - 20} J", f"{m * h} J"),
        correct=0,
        solution=f"PE = mgh = {m} × 10 × {h} = {pe} J",
    )


# ============================================================
# Chemistry
# ============================================================

def _ph_poh(rng: random.Random) -> RawTemplateQuestion:
    ph = rng.randint(3, 11)
    poh = 14 - ph
    return RawTemplateQuestion(
        text=f"If the pH of a solution is {ph}, what is its pOH at 25°C?",
        options=(f"{poh}", f"{ph}", "7", "14"),
        correct=0,
        solution=f"pH + pOH = 14. Thus, pOH = 14 - {ph} = {poh}.",
    )


_CHEMISTRY_FACTS = (
    RawTemplateQuestion(
        text="Which element has the highest electronegativity?",
        options=("Fluorine", "Oxygen", "Chlorine", "Nitrogen"),
        correct=0,
        solution="Fluorine has the highest electronegativity value of 3.98 on the Pauling scale.",
    ),
    RawTemplateQuestion(
        text="What is the molecular weight of water (H₂O)?",
        options=("18 g/mol", "16 g/mol", "20 g/mol", "17 g/mol"),
        correct=0,
        solution="H₂O = 2(1) + 16 = 18 g/mol",
    ),
)


def _avogadro(rng: random.Random) -> RawTemplateQuestion:
    moles = rng.randint(1, 5)
    molecules = moles * 6.022
    return RawTemplateQuestion(
        text=(f"How many molecules are present in {moles} moles of a substance? "
              "(Use Avogadro's number = 6.022 × 10²³)"),
        options=(
            f"{_fixed(molecules)} × 10²³",
            f"{_fixed(molecules * 2)} × 10²³",
            f"{_fixed(molecules / 2)} × 10²³",
            f"{moles} × 10²³",
        ),
        correct=0,
        solution=f"Number of molecules = n × Nₐ = {moles} × 6.022 × 10²³ = {_fixed(molecules)} × 10²³",
    )


# ============================================================
# Maths
# ============================================================

def _power_rule(rng: random.Random) -> RawTemplateQuestion:
    a = rng.randint(2, 5)
    return RawTemplateQuestion(
        text=f"Evaluate: ∫ x^{a} dx",
        options=(f"x^{a + 1}/{a + 1} + C", f"x^{a - 1}/{a - 1} + C", f"{a}x^{a - 1} + C", f"x^{a + 1} + C"),
        correct=0,
        solution=f"Power rule: ∫ x^n dx = x^(n+1)/(n+1) + C. Result: x^{a + 1}/{a + 1} + C.",
    )


def _sum_and_product(rng: random.Random) -> RawTemplateQuestion:
    a, b = rng.randint(2, 9), rng.randint(2, 9)
    total, prod = a + b, a * b
    return RawTemplateQuestion(
        text=f"Find two numbers whose sum is {total} and product is {prod}.",
        options=(f"{a} and {b}", f"{a + 1} and {b - 1}", f"{prod} and 1", f"{total} and 0"),
        correct=0,
        solution=f"The numbers are {a} and {b}. Sum: {a}+{b}={total}, Product: {a}×{b}={prod}",
    )


def _natural_sum(rng: random.Random) -> RawTemplateQuestion:
    n = rng.randint(3, 7)
    ans = n * (n + 1) // 2
    return RawTemplateQuestion(
        text=f"What is the sum of first {n} natural numbers?",
        options=(f"{ans}", f"{ans + n}", f"{n * n}", f"{n + 1}"),
        correct=0,
        solution=f"Sum = n(n+1)/2 = {n}({n + 1})/2 = {ans}",
    )


# ============================================================
# Biology
# ============================================================

_BIOLOGY_BASICS = (
    RawTemplateQuestion(
        text="Which organelle is known as the 'Powerhouse of the cell'?",
        options=("Mitochondria", "Nucleus", "Ribosome", "Lysosome"),
        correct=0,
        solution="Mitochondria produce ATP through cellular respiration, providing energy for the cell.",
    ),
    RawTemplateQuestion(
        text="DNA stands for:",
        options=("Deoxyribonucleic Acid", "Deoxyribo Acid", "Dinucleic Acid", "Delta Nucleic Acid"),
        correct=0,
        solution="DNA is the hereditary material in most living organisms.",
    ),
)

_BIOLOGY_HUMAN = (
    RawTemplateQuestion(
        text="Which blood group is known as the universal donor?",
        options=("O negative", "AB positive", "A positive", "B negative"),
        correct=0,
        solution="O negative blood lacks A, B antigens and Rh factor, making it safe for all recipients.",
    ),
    RawTemplateQuestion(
        text="How many chromosomes are present in a human somatic cell?",
        options=("46", "23", "44", "48"),
        correct=0,
        solution="Human somatic cells have 46 chromosomes (23 pairs).",
    ),
)

_BIOLOGY_MOLECULAR = (
    RawTemplateQuestion(
        text="Which enzyme is responsible for unwinding DNA during replication?",
        options=("Helicase", "DNA polymerase", "Ligase", "Primase"),
        correct=0,
        solution="Helicase unwinds the DNA double helix by breaking hydrogen bonds between base pairs.",
    ),
    RawTemplateQuestion(
        text="In which phase of mitosis do chromosomes align at the cell's equator?",
        options=("Metaphase", "Prophase", "Anaphase", "Telophase"),
        correct=0,
        solution="During metaphase, chromosomes line up at the metaphase plate (cell equator).",
    ),
)


# Registration order matters: it breaks ties in nearest_template.
TEMPLATES: Dict[str, List[QuestionTemplate]] = {
    "Physics": [
        QuestionTemplate(1, _kinematics),
        QuestionTemplate(3, _newton_second_law),
        QuestionTemplate(2, _potential_energy),
    ],
    "Chemistry": [
        QuestionTemplate(2, _ph_poh),
        QuestionTemplate(1, lambda rng: _pick(rng, _CHEMISTRY_FACTS)),
        QuestionTemplate(3, _avogadro),
    ],
    "Maths": [
        QuestionTemplate(2, _power_rule),
        QuestionTemplate(1, _sum_and_product),
        QuestionTemplate(3, _natural_sum),
    ],
    "Biology": [
        QuestionTemplate(1, lambda rng: _pick(rng, _BIOLOGY_BASICS)),
        QuestionTemplate(2, lambda rng: _pick(rng, _BIOLOGY_HUMAN)),
        QuestionTemplate(3, lambda rng: _pick(rng, _BIOLOGY_MOLECULAR)),
    ],
}


# ============================================================
# Pure selection helpers
# ============================================================

def clamp_level(level: int) -> int:
    return max(1, min(5, level))


def nearest_template(templates: Sequence[QuestionTemplate], target: int) -> QuestionTemplate:
    """Template whose level is closest to target; first registered wins ties."""
    if not templates:
        raise ValueError("no templates registered")
    best = templates[0]
    for candidate in templates[1:]:
        if abs(candidate.level - target) < abs(best.level - target):
            best = candidate
    return best


def shuffle_options(options: Sequence[str], correct_index: int, rng: random.Random) -> Tuple[List[str], int]:
    """
    Fisher-Yates permutation of the option positions.

    Returns the permuted options and the new position of the option that
    was at correct_index.
    """
    indices = list(range(len(options)))
    for i in range(len(indices) - 1, 0, -1):
        j = rng.randint(0, i)
        indices[i], indices[j] = indices[j], indices[i]
    return [options[i] for i in indices], indices.index(correct_index)


# ============================================================
# Generator
# ============================================================

class ProceduralGenerator:
    """Synthesizes well-formed questions from TEMPLATES. No I/O."""

    def __init__(self, rng: Optional[random.Random] = None,
                 templates: Optional[Dict[str, List[QuestionTemplate]]] = None):
        self.rng = rng or random.Random()
        self.templates = templates if templates is not None else TEMPLATES

    def _templates_for(self, subject: str) -> List[QuestionTemplate]:
        return self.templates.get(subject) or self.templates[FALLBACK_SUBJECT]

    def generate(self, filters: Filters) -> Question:
        pool = filters.subject_pool()
        subject = pool[self.rng.randrange(len(pool))]
        target = clamp_level(filters.difficulty + self.rng.randint(-1, 1))
        template = nearest_template(self._templates_for(subject), target)

        raw = template.gen(self.rng)
        options, correct = shuffle_options(raw.options, raw.correct, self.rng)

        return Question(
            id=new_question_id(),
            text=raw.text,
            options=options,
            correct_index=correct,
            solution=raw.solution,
            subject=subject,
            exam_type=filters.exam,
            difficulty=template.level,
            origin=Origin.PROCEDURAL,
        )

    def generate_batch(self, filters: Filters, n: int) -> List[Question]:
        return [self.generate(filters) for _ in range(max(0, n))]
