"""
Prompt Builder - SOAP Note Generation Prompts

This module constructs the prompt sent to either provider. The template is
fixed and shared by both providers so the only difference between them is
the transport shape.

Prompt Contract:
    1. Role: clinical documentation specialist
    2. The four SOAP sections with what belongs in each
    3. No fabrication beyond the transcript
    4. A reference note, when present, is stylistic guidance only

Pipeline Position:
    Request → [PromptBuilder] → NoteGenerator → Provider client
              ^^^^^^^^^^^^^^^
              You are here
"""

from typing import Optional


# =============================================================================
# STAGE 1: PROMPT TEMPLATES
# =============================================================================

SOAP_NOTE_TEMPLATE = """
You are a clinical documentation specialist. Generate a complete and medically accurate SOAP note based on the transcript below.

### Instructions:
- Produce a structured, concise, and clinically coherent SOAP note.
- Follow the exact SOAP format:
  **S – Subjective**: Patient-reported symptoms, history, and concerns.
  **O – Objective**: Exam findings, vitals, tests, observable/measurable details.
  **A – Assessment**: Diagnoses, differential diagnoses, and clinical reasoning.
  **P – Plan**: Treatment, medications, labs/imaging, follow-up instructions.
- Do NOT hallucinate. Use only information present in the transcript.
- If a reference note is provided, treat it ONLY as stylistic guidance.
- Maintain a professional, medical tone.
- Keep paragraphs short and clear.

### Transcript:
{transcript}

Now produce the final SOAP note.
"""

SYSTEM_INSTRUCTION = "You are a medical scribe assistant. Summarize transcripts into SOAP format."


# =============================================================================
# STAGE 2: PROMPT BUILDER CLASS
# =============================================================================


class PromptBuilder:
    """
    Builds the SOAP generation prompt.

    The reference note is never embedded in the prompt body; the template
    only tells the model that a reference, if any, is style guidance.

    Example:
        >>> builder = PromptBuilder()
        >>> prompt = builder.build_generation_prompt("Doctor: How are you...")
        >>> "### Transcript:" in prompt
        True
    """

    def __init__(self, template: str = SOAP_NOTE_TEMPLATE, system_instruction: str = SYSTEM_INSTRUCTION):
        self._template = template
        self._system_instruction = system_instruction

    def build_generation_prompt(self, transcript: str, reference: Optional[str] = None) -> str:
        """
        Render the generation prompt for one transcript.

        Args:
            transcript: Clinical conversation text
            reference: Accepted for interface symmetry; not embedded

        Returns:
            Prompt text
        """
        return self._template.format(transcript=transcript)

    @property
    def system_instruction(self) -> str:
        return self._system_instruction
