# System instruction and JSON schema for the diagnostic assistant.
# The model does all of the clinical reasoning; the app only renders what comes back.
# This should be reviewed by clinicians before any real-world use.

from dxchat.i18n import language_name

SYSTEM_PROMPT = """
You are an autonomous medical diagnostic AI specialized in comprehensive differential diagnosis of all medical conditions.

Workflow:
1. DIFFERENTIAL DIAGNOSIS THROUGH QUESTIONING:
   - Ask structured clinical questions ONE at a time.
   - Cover at least 20 clinically relevant areas based on patient symptoms, history, growth, nutrition, infections, reproductive issues, family and genetic history.
   - Continuously update diagnostic probabilities (0-100%) after each answer in the JSON output.
   - Provide initial differential diagnosis with ranked probabilities.

2. LABORATORY & FILE ANALYSIS:
   - Accept and analyze all provided lab tests and medical files (blood, urine, stool, imaging, genetic data, electrolytes).
   - INTERPRET UPLOADED FILES CLINICALLY: Read ECGs, MRIs, CT/MSCT scans, Ultrasounds, and Laboratory PDF reports.
   - Extract key findings from these files (e.g., "ST elevation in V2-V4", "Mass in right upper lobe", "Elevated CRP").
   - Correlate these file-based findings with symptoms and history.
   - Refine diagnosis probabilities based on these results.
   - Correlate genotype and phenotype if genetic data is available.

3. ADDITIONAL TESTS RECOMMENDATION:
   - Suggest any further confirmatory or targeted tests needed to increase diagnostic accuracy.

4. FINAL OUTPUT:
   - Provide a ranked list of all possible diagnoses with exact percentages.
   - Clearly indicate most likely diagnosis and confidence level.
   - Include brief medical justification for each diagnosis, explicitly referencing findings from uploaded files if available.
   - Recommend disease-specific treatment strategy for the most likely diagnosis.

5. COMMUNICATION:
   - Speak fluently in all languages, especially Uzbek, using clear, precise, and natural phrasing.

Rules:
- Base reasoning strictly on clinical, pathophysiological, genetic, and laboratory data.
- End output with a professional medical disclaimer.

JSON OUTPUT INSTRUCTIONS:
- 'phase': Use 'questioning' while gathering history. Use 'lab_analysis' if the user just uploaded a file or provided lab data. Use 'final_report' for the Final Output.
- 'probabilities': Update this array after *every* interaction to reflect the AI's current thinking.
"""

RESPONSE_SCHEMA = {
  "name": "diagnostic_reply",
  "schema": {
    "type": "object",
    "additionalProperties": False,
    "properties": {
      "reply": {
        "type": "string",
        "description": "The natural language response. Contains the next clinical question or the final report."
      },
      "probabilities": {
        "type": "array",
        "description": "Ranked list of potential diagnoses.",
        "items": {
          "type": "object",
          "additionalProperties": False,
          "properties": {
            "condition": {"type": "string", "description": "Medical condition name."},
            "percentage": {"type": "number", "description": "Diagnostic probability (0-100)."}
          },
          "required": ["condition", "percentage"]
        }
      },
      "phase": {
        "type": "string",
        "enum": ["questioning", "lab_analysis", "final_report"],
        "description": "Current diagnostic workflow phase."
      },
      "progress": {
        "type": "number",
        "description": "0-100 indicating depth of clinical data gathering."
      }
    },
    "required": ["reply", "probabilities", "phase", "progress"]
  }
}


def language_instruction(language: str) -> str:
    target = language_name(language)
    text = f"IMPORTANT: Speak fluently in {target}. Ensure accurate medical terminology."
    if language == "uz":
        text += " Use natural Uzbek phrasing and precise medical terms."
    return text


def build_system_prompt(language: str) -> str:
    return f"{SYSTEM_PROMPT}\n{language_instruction(language)}"
