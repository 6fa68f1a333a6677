"""
Prompt templates for AI job extraction and Greenhouse post-processing.
"""

JOB_EXTRACTION_PROMPT_VERSION = "job_extraction_v3"
JOB_POSTPROCESS_PROMPT_VERSION = "job_postprocess_v1"

JOB_EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at extracting structured job listing data from HTML. "
    "You are given a job listing URL and the content of the job listing. "
    "Extract the structured data from the content."
)

JOB_EXTRACTION_PROMPT = """Extract the following information from this job listing and return it as JSON:

Required fields:
- title: Job title
- company: Company name (the organization posting the job)
- company_domain: The industry/domain the company operates in (e.g. "FinTech", "SaaS", "Healthcare", "AI/ML", "Other"; null if unclear)
- job_role: Job role/title (can be the same as title or a normalized version)
- job_role_department: The department/function of the role (e.g. "Engineering", "Product", "Design", "Data Science", "Sales", "Marketing", "Operations", "Other")
- job_board: The job board where the listing was found (e.g. "LinkedIn", "Greenhouse", "Lever", "AshbyHQ", "Other")
- description: Full job description (text only, no HTML)
- requirements: Required qualifications and skills
- responsibilities: Key responsibilities and duties
- location: Office location or "Remote"
- remote_type: one of "on_site", "hybrid", or "remote"

Optional fields (use null if not found):
- about_company: A concise "About the company" section
- company_culture: Company values/culture section
- salary_min: Minimum salary as number
- salary_max: Maximum salary as number
- salary_currency: Currency code (e.g. "USD", "EUR")
- equity_info: Stock options or equity details
- benefits: Benefits package description
- perks: Additional perks and amenities
- custom_sections: Any additional structured data as a JSON object

Also provide:
- confidence_score: Your confidence in the extraction accuracy (0.0 to 1.0)
- notes: Any extraction challenges or uncertainties

Job Listing URL: {url}

Content:
{html_content}

Return only valid JSON with no additional commentary."""

JOB_POSTPROCESS_SYSTEM_PROMPT = (
    "You are an expert at extracting structured job posting information. "
    "Only extract what is present in the content."
)

JOB_POSTPROCESS_PROMPT = """Given the job posting content below, extract missing structured information.

Return ONLY valid JSON (no code fences) with this schema:
{{
  "compensation_text": String|null,
  "salary_min": Number|null,
  "salary_max": Number|null,
  "salary_currency": String|null,
  "responsibilities_bullets": [String],
  "requirements_bullets": [String],
  "benefits_bullets": [String],
  "perks_bullets": [String],
  "confidence_score": Number
}}

If something isn't present, return null or [] accordingly.

Job URL: {url}

Job Content:
{html_content}"""


def build_extraction_prompt(url: str, content: str) -> str:
    return JOB_EXTRACTION_PROMPT.format(url=url, html_content=content)


def build_postprocess_prompt(url: str, content: str) -> str:
    return JOB_POSTPROCESS_PROMPT.format(url=url, html_content=content)
