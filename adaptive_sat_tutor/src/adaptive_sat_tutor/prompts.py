"""
Prompt Builders

Plain functions that assemble the system/user prompts for exam generation,
exam validation, lessons, remediation chat and student-model updates.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from adaptive_sat_tutor.session_state import StudentModel

EXAM_WRITER_SYSTEM_PROMPT = (
    "You are a precise SAT Math question writer. Every answer and explanation must be "
    "mathematically correct. Solve each problem fully before writing. Never second-guess "
    "or recompute within an explanation."
)

EXAM_VALIDATOR_SYSTEM_PROMPT = (
    "You are a careful SAT Math validator. Do not assume the provided answer is correct."
)

EXAM_CONTEXT = {
    "pre": (
        "This is a PRE-EXAM diagnostic. Cover the full difficulty range of the topic "
        "(easy, medium and hard) to measure what the student already knows."
    ),
    "post": (
        "This is a POST-EXAM given after the lesson. Test whether the student learned the "
        "concepts the lesson taught."
    ),
    "remediation": (
        "This is a REMEDIATION EXAM. Target the concepts the student previously missed, "
        "using different numbers and scenarios."
    ),
}

MATH_FORMATTING_RULES = """- Use LaTeX ($...$) for ALL math, even single variables like $x$ or $y$.
- No spaces after an opening $ or before a closing $.
- Always put a space before and after every $...$ in prose (WRONG: "the value of$y$when$x = 2$", CORRECT: "the value of $y$ when $x = 2$").
- Never write bare LaTeX such as \\frac, \\left or \\right outside $...$."""


def format_choices(choices: Dict[str, str], separator: str = "\n") -> str:
    return separator.join(f"{label}) {value}" for label, value in choices.items())


def _join_or(items: Sequence[str], fallback: str) -> str:
    return ", ".join(items) or fallback


def _student_profile_block(student_model: Optional[StudentModel]) -> str:
    if not student_model or not student_model.has_signal():
        return ""
    return f"""
STUDENT PROFILE:
- Strengths: {_join_or(student_model.strengths, 'None identified yet')}
- Weaknesses: {_join_or(student_model.weaknesses, 'None identified yet')}
- Misconceptions: {_join_or(student_model.misconceptions, 'None identified yet')}
- Mastery Level: {student_model.mastery_level}%"""


def _student_answer(question: Dict[str, Any], idk_text: str = 'Said "I don\'t know"') -> str:
    if question.get("is_idk"):
        return idk_text
    return question.get("user_answer") or idk_text


def build_exam_prompt(
    topic_name: str,
    topic_description: str,
    exam_type: str,
    question_count: int,
    student_model: Optional[StudentModel] = None,
    prior_wrong_questions: Optional[List[Dict[str, Any]]] = None,
    avoid_questions: Optional[List[str]] = None,
) -> str:
    """User prompt asking for `question_count` SAT multiple-choice items."""
    wrong_block = ""
    if prior_wrong_questions:
        lines = [
            f"{i}. {q['question_text']} (Correct: {q['correct_answer']}, "
            f"Student answered: {_student_answer(q, 'IDK')})"
            for i, q in enumerate(prior_wrong_questions, 1)
        ]
        wrong_block = "\nPREVIOUSLY MISSED QUESTIONS (write new questions testing these same concepts):\n" + "\n".join(lines)

    avoid_block = ""
    if avoid_questions:
        lines = [f"{i}. {text}" for i, text in enumerate(avoid_questions, 1)]
        avoid_block = "\nQUESTIONS TO AVOID REPEATING (do NOT reuse these questions or their numbers):\n" + "\n".join(lines)

    return f"""You are an expert SAT Math tutor writing exam questions.

TOPIC: {topic_name}
DESCRIPTION: {topic_description}

{EXAM_CONTEXT[exam_type]}
{_student_profile_block(student_model)}
{wrong_block}
{avoid_block}

Generate exactly {question_count} multiple-choice questions for the SAT Math section.

REQUIREMENTS:
- Every question is SAT-style with 4 answer choices (A, B, C, D).
- Exactly ONE choice is correct; the other three are incorrect.
- Use LaTeX for ALL math: $...$ inline, $$...$$ display.
- Wrap every math expression in $...$, including choice values: write "$\\frac{{2}}{{3}}$", not "\\frac{{2}}{{3}}".
- Inequalities use LaTeX commands INSIDE $...$: write "$x \\leq 3$", not "$x$ ≤ $3$" or "x \\leq 3".
- Never write \\leq, \\geq, \\neq, \\frac, \\left, \\right or any other LaTeX command outside $...$.
- Always put a space between a word and an opening $ ("solve $x$", not "solve$x$") and between a closing $ and the next word ("$x = 3$ and", not "$x = 3$and").
- Keep SAT difficulty, vary it across questions, and test a distinct concept with a distinct structure in each question.

MATHEMATICAL ACCURACY:
1. Solve the problem completely before writing anything and confirm the numerical answer.
2. The explanation is ONE linear solution path, one algebraic step per line, ending with an unambiguous statement of the answer (e.g. "Therefore $x = 1$").
3. Place the answer from step 2 under one letter; the other three choices are distinct plausible distractors.
4. correct_answer is the letter whose value matches the explanation's answer.
5. No "rechecking", "verifying", "however", "alternatively" or second computation in the explanation.
6. When multiplying or dividing by a negative number, flip <, >, \\leq and \\geq. Never flip \\neq.

NOT-EQUALS RULES:
- Do NOT ask "Which of the following is a possible value for $x$?" about a $\\neq$ relation.
- "Which of the following is NOT a possible value for $x$?" is allowed ONLY when the stem states a single linear relation of the form $ax + b \\neq c$; exactly one choice is the excluded value and the other three are possible values. Never use that phrasing for any other kind of question.
- When asked to solve a single-variable $\\neq$ relation, every choice must be a relation (e.g. "$x \\neq 3$"), never a bare number.

SYSTEMS OF EQUATIONS:
- Start from a known solution point (e.g. $x = 2$, $y = 3$) and build every equation so that point satisfies it.
- Never give two equations plus a value unless that value produces the SAME answer in every equation.

GRAPHING NOT-EQUALS:
- The graph of $y \\neq c$ or $x \\neq c$ is a dashed line at the boundary with shading on BOTH sides.
- One choice must explicitly describe shading on both sides of the dashed line; do not make every choice shade one side."""


def build_exam_validation_prompt(questions: Sequence[Dict[str, Any]]) -> str:
    """Ask an independent solver which choices are correct for each question."""
    count = len(questions)
    listing = "\n\n".join(
        f"{i}. {q['question_text']}\n{format_choices(q['choices'])}"
        for i, q in enumerate(questions, 1)
    )
    return f"""You are a strict SAT Math validator. Solve each question and report which answer choices (A-D) are correct.

Rules:
- Use only the question text and the choices; ignore any claimed correct answer.
- If more than one choice is correct, list every correct letter.
- If no choice is correct, return an empty array for that question.
- Return a result for EVERY question: exactly {count} results with indices 1..{count}, in order.
- For graphing questions involving only a single $\\neq$ relation ($y \\neq c$ or $x \\neq c$), the only correct graph has a dashed boundary and shading on BOTH sides.
- For systems involving $\\neq$, a point on an excluded line is NOT a solution.
- For "$ax + b \\neq c$" questions asking which value is NOT possible, the correct choice is the value that makes $ax + b = c$.

Return JSON matching the provided schema.

QUESTIONS:
{listing}"""


def build_lesson_prompt(
    topic_name: str,
    topic_description: str,
    lesson_type: str,
    session_number: int,
    wrong_questions: Sequence[Dict[str, Any]],
    student_model: Optional[StudentModel] = None,
    remediation_insights: Optional[str] = None,
) -> str:
    is_remediation = lesson_type == "remediation"

    wrong_block = ""
    if wrong_questions:
        items = []
        for i, q in enumerate(wrong_questions, 1):
            items.append(
                f"\nQuestion {i}: {q['question_text']}\n"
                f"Choices: {format_choices(q['choices'], ', ')}\n"
                f"Correct Answer: {q['correct_answer']}\n"
                f"Student's Answer: {_student_answer(q)}\n"
                f"Explanation: {q.get('explanation', '')}\n"
            )
        wrong_block = "\nQUESTIONS THE STUDENT GOT WRONG (address every one):" + "\n".join(items)

    approach_block = ""
    if is_remediation and session_number > 1:
        approach_block = f"""
IMPORTANT: This is remediation attempt #{session_number}. The student has already had a lesson on these concepts and still struggled. Teach it DIFFERENTLY:
- New analogies and examples
- Smaller steps
- More concrete, visual explanations
- Start from a more fundamental level"""

    insights_block = f"\nINSIGHTS FROM REMEDIATION CONVERSATIONS:\n{remediation_insights}" if remediation_insights else ""

    kind_line = (
        "This is a REMEDIATION LESSON targeting the concepts the student got wrong."
        if is_remediation
        else "This is an INITIAL LESSON teaching the fundamentals of the topic."
    )

    exam_section = ""
    if wrong_questions:
        exam_section = """4. **Your Exam Questions Explained**: for EACH missed question
   - Show the question
   - Explain why the answer given was wrong (or why the student may have been unsure)
   - Walk through the correct solution step by step
   - Name the key concept or technique"""

    return f"""You are an expert SAT Math tutor writing a {'remediation' if is_remediation else 'personalized'} lesson.

TOPIC: {topic_name}
DESCRIPTION: {topic_description}
{_student_profile_block(student_model)}
{approach_block}

{kind_line}
{wrong_block}
{insights_block}

Write an engaging lesson in Markdown. Use LaTeX for all math ($...$ inline, $$...$$ display).

STRUCTURE:

1. **Introduction**: a short, motivating opening
2. **Core Concepts**: clear definitions, properties and intuition
3. **Worked Examples**: step-by-step examples
{exam_section}
5. **Key Takeaways**: the most important points
6. **Video Resources**: 2-3 Khan Academy or similar video topics to search for

STYLE:
- High-school level, friendly and encouraging
- Break complex ideas into small steps and use analogies where they help
- Bold key terms and formulas"""


def build_remediation_start_prompt(
    topic_name: str,
    question: Dict[str, Any],
    student_model: Optional[StudentModel] = None,
) -> str:
    profile_block = ""
    if student_model:
        profile_block = f"""
STUDENT PROFILE:
- Known misconceptions: {_join_or(student_model.misconceptions, 'None yet')}
- Weaknesses: {_join_or(student_model.weaknesses, 'None yet')}"""

    return f"""You are a Socratic SAT Math tutor. A student got this question wrong (or said "I don't know"). Guide them to understanding with hints and sub-questions; do NOT give the answer directly.

TOPIC: {topic_name}
{profile_block}

THE QUESTION:
{question['question_text']}

CHOICES:
{format_choices(question['choices'])}

CORRECT ANSWER: {question['correct_answer']}
STUDENT'S ANSWER: {_student_answer(question)}
EXPLANATION: {question.get('explanation', '')}

Begin the remediation by:
1. Acknowledging the student's attempt, encouragingly
2. Asking a simpler sub-question or giving a hint toward the key concept
3. Not revealing the correct answer yet

{MATH_FORMATTING_RULES}
Keep the response concise (2-4 sentences plus a question).
Do NOT start with "Tutor:", "Assistant:" or any other role label."""


def format_conversation(messages: Iterable[Dict[str, str]]) -> str:
    return "\n\n".join(
        f"[{'assistant' if m['role'] == 'assistant' else 'student'}]: {m['content']}"
        for m in messages
    )


def build_remediation_respond_prompt(
    topic_name: str,
    question: Dict[str, Any],
    conversation_history: Sequence[Dict[str, str]],
    student_message: str,
) -> str:
    return f"""You are a Socratic SAT Math tutor guiding a student through a problem they got wrong.

TOPIC: {topic_name}

ORIGINAL QUESTION:
{question['question_text']}

CHOICES:
{format_choices(question['choices'])}

CORRECT ANSWER: {question['correct_answer']}
FULL EXPLANATION: {question.get('explanation', '')}

CONVERSATION SO FAR:
{format_conversation(conversation_history)}

Student's latest message: {student_message}

INSTRUCTIONS:
- If the student is making progress, encourage them and ask a follow-up question
- If the student is stuck, give a more direct hint
- If the student clearly understands the concept, mark the conversation resolved
- After 4-5 exchanges with no progress, explain the solution clearly and mark it resolved
- Keep responses to 2-4 sentences, warm and encouraging
{MATH_FORMATTING_RULES}
- Do NOT start with "Tutor:", "Assistant:" or any other role label.

Respond with a JSON object: {{"message": "...", "is_resolved": true/false}}"""


def build_student_model_update_prompt(
    topic_name: str,
    current_model: StudentModel,
    exam_results: Sequence[Dict[str, Any]],
    remediation_insights: Optional[str] = None,
) -> str:
    correct = sum(1 for q in exam_results if q.get("is_correct"))
    total = len(exam_results)
    score = round(correct / total * 100) if total else 0

    results = "\n".join(
        f"{i}. {q['question_text']}\n"
        f"   Correct: {q['correct_answer']} | Student: {_student_answer(q, 'IDK')} | "
        f"{'CORRECT' if q.get('is_correct') else 'WRONG'}"
        for i, q in enumerate(exam_results, 1)
    )
    insights_block = f"\nREMEDIATION INSIGHTS:\n{remediation_insights}" if remediation_insights else ""

    return f"""You are an AI tutor analyzing a student's performance to update their learning profile.

TOPIC: {topic_name}

CURRENT STUDENT MODEL:
- Strengths: {_join_or(current_model.strengths, 'None identified')}
- Weaknesses: {_join_or(current_model.weaknesses, 'None identified')}
- Misconceptions: {_join_or(current_model.misconceptions, 'None identified')}
- Current Mastery Level: {current_model.mastery_level}%

EXAM RESULTS ({correct}/{total} correct, {score}%):
{results}
{insights_block}

Update the student model:
1. STRENGTHS: concepts the student has demonstrated (keep valid existing ones, add new ones)
2. WEAKNESSES: areas needing work (drop resolved ones, add new ones)
3. MISCONCEPTIONS: precise misunderstandings (e.g. "Confuses slope with y-intercept", not "doesn't understand lines")
4. MASTERY LEVEL: 0-100 overall understanding of the topic

Be specific and actionable."""
