# Prompts for the property document analysis pipeline.
# - Every prompt ends with JSON_ONLY_CONTRACT; the lenient extractor in
#   utils/json_parser.py is the second line of defence.
# - Prompts provided:
#   1) build_identification_prompt     (segmented pipeline, stage 1)
#   2) build_detailed_analysis_prompt  (segmented pipeline, stage 2, per document)
#   3) build_batch_task_prompt         (batched pipeline, per task and batch)
#   4) build_synthesis_prompt          (batched pipeline, per task)

import json
from typing import Any, Dict, List, Sequence

from titlescan.schemas.analysis import InputFile

JSON_ONLY_CONTRACT = (
    "CRITICAL INSTRUCTION: Your entire response MUST be a single, valid JSON object. "
    "Do not include any introductory text, phrases like \"Here is the JSON you requested,\" "
    "or any text after the closing brace of the JSON object. "
    "The response should start with `{` and end with `}`."
)

# Detail requirements shared by every prompt that writes a document summary
SUMMARY_REQUIREMENTS = """\
The `summary` MUST:
  i.   Explain the document's core content, primary purpose and the "story" it tells.
  ii.  Narrate any sequence of events, transactions or legal narrative clearly and thoroughly.
  iii. Explicitly include all specific, important details:
       - Measurements: land area (acres, sq ft, sq m), dimensions, distances.
       - Names: individuals, companies, government entities, witnesses, property identifiers
         (e.g. "Plot No. 123, Evergreen Estates").
       - Numbers: monetary amounts with currency, registration numbers, survey numbers, plot numbers,
         case numbers, loan account numbers, clause or section references.
       - Dates: execution, registration, commencement, expiry, notice and hearing dates.
  iv.  Present structured information (property schedules, encumbrance lists, payment breakdowns,
       lists of heirs) as a concise markdown table inside the summary.
  v.   Translate and explain any critical content written in a language other than English."""

TITLE_TRANSFER_CRITERIA = """\
A `titleChainEvent` is ONLY for instruments that transfer or finally settle ownership of the property:
  INCLUDE: Sale Deed, Conveyance Deed, Gift Deed, Release / Relinquishment Deed, Partition Deed,
           Settlement Deed, Will or succession / inheritance documents once effective,
           Court decrees or orders that vest or change title.
  EXCLUDE: Tax receipts, encumbrance certificates, mutation extracts, legal notices, power of attorney,
           agreements to sell or other agreements that are not the final instrument, leases,
           mortgage or loan documents, survey sketches, identity documents.
If the document is in the EXCLUDE list, or you are unsure, OMIT the `titleChainEvent` field entirely."""

RED_FLAG_GUIDANCE = """\
Red flags are issues a lawyer conducting property due diligence should be aware of. For each one give
`description`, `severity` ('Low', 'Medium' or 'High') and an actionable `suggestion`.
  - 'Low': minor discrepancies that are likely explainable.
  - 'Medium': issues that need further investigation and could affect the transaction or title.
  - 'High': serious concerns that could jeopardise title, legality or enforceability, or indicate fraud.
Examples: discrepancies in names, dates or property descriptions; gaps in the title chain; undischarged
mortgages, liens or encumbrances; missing signatures, attestation or registration; references to
documents that were not provided; unresolved claims or litigation."""

BATCH_TASKS: Dict[str, str] = {
    "propertySummary": """\
Generate a `propertySummary` object.
- Based on all documents, determine the `currentOwner`.
- Provide a concise, one-paragraph `propertyBrief` summarizing the property's key identifiers (area, location, address).
- The output for this task must be a JSON object like: {"propertySummary": {"currentOwner": "...", "propertyBrief": "..."}}""",
    "titleChain": """\
Generate a `titleChainEvents` array.
- Identify all documents representing ownership transfers (e.g., Sale Deed, Gift Deed, Release Deed, inheritance, title-affecting court orders).
- For each event, extract: `eventId`, `order` (chronological, starting from 0), `date` (YYYY-MM-DD where possible), `documentType`, `transferor`, `transferee`, `propertyDescription` and a `summaryOfTransaction`.
- Where the event is evidenced by a document, set `sourceFileName` and `relatedDocumentType` so it can be linked to that document.
- Order the events strictly from oldest to newest.
- The output for this task must be a JSON object like: {"titleChainEvents": [{"eventId": "...", ...}]}""",
    "documentDetails": """\
Generate a `processedDocuments` array.
- For each distinct document section, determine its `documentType`, `sourceFileName`, `pageRangeInSourceFile` (e.g. "Pages 1-5").
- Provide a comprehensive `summary` that narrates the document's story and extracts all specific details: names, dates, measurements, monetary amounts, registration numbers, etc. Use markdown tables for structured data.
- Extract the primary `date` and `partiesInvolved`.
- Assign a unique `documentId` and the starting `originalImageIndex`.
- Set `status` to 'Processed', or 'Unsupported' with an `unsupportedReason` when the section cannot be meaningfully analysed.
- The output for this task must be a JSON object like: {"processedDocuments": [{"documentId": "...", ...}]}""",
    "redFlags": """\
Generate a `redFlags` array.
- Identify potential issues or inconsistencies that a lawyer should be aware of.
- For each red flag, provide: `redFlagId`, a clear `description`, a `severity` ('Low', 'Medium', or 'High'), and an actionable `suggestion`.
- List the affected documents in `relatedDocuments` as objects {"sourceFileName": "...", "documentType": "..."}.
- Examples: Discrepancies in names/dates, gaps in the title chain, undischarged mortgages.
- The output for this task must be a JSON object like: {"redFlags": [{"redFlagId": "...", ...}]}""",
}


def format_file_list(input_files: Sequence[InputFile]) -> str:
    """Render input files as ``- name (N pages)`` lines."""
    return "\n".join(f"- {f.name} ({f.total_pages} pages)" for f in input_files)


def build_identification_prompt(input_files: Sequence[InputFile], total_pages: int) -> str:
    """Prompt asking the model to split the page sequence into logical documents."""
    return f"""
You are an expert AI assistant specialized in analyzing property and legal documents for due diligence.
The user has uploaded PDF documents which, combined, have {total_pages} pages.
The uploaded documents are:
{format_file_list(input_files)}

I will provide you with a series of images. These images are a concatenation of all pages from the above
documents, in the order they were listed. Some pages may be missing if they could not be rendered.

Your ONLY task is to identify every distinct document contained in these pages (e.g. Sale Deed,
Lease Agreement, Tax Receipt, Legal Notice, Encumbrance Certificate, Title Search Report).
For each document return:
  - `documentType`: the type of the document.
  - `sourceFileName`: the file it belongs to, exactly as written in the list above.
  - `startPage`: first page of the document, numbered from 1 WITHIN its source file.
  - `endPage`: last page of the document, numbered from 1 WITHIN its source file.

Rules:
  - A document never spans two source files.
  - Cover every page that belongs to a document; do not overlap page ranges.
  - Do not describe or summarize the documents yet.

Return a JSON object of the form:
{{"documents": [{{"documentType": "Sale Deed", "sourceFileName": "file.pdf", "startPage": 1, "endPage": 3}}]}}

{JSON_ONLY_CONTRACT}
"""


def build_detailed_analysis_prompt(document_type: str, source_file_name: str, page_count: int) -> str:
    """Prompt for the deep analysis of one already-segmented document."""
    return f"""
You are an expert AI assistant specialized in analyzing property and legal documents for due diligence.
The following {page_count} page image(s) form ONE document, identified as a "{document_type}",
taken from the file "{source_file_name}". Analyze only these pages.

Return a JSON object with:
  - `summary` (required): a comprehensive explanation of the document.
  - `date` (optional): the primary or effective date of the document, as YYYY-MM-DD where possible.
  - `partiesInvolved` (optional): the main parties and their roles, e.g. "John Doe (Seller), Jane Smith (Buyer)".
  - `titleChainEvent` (optional): {{"date", "documentType", "transferor", "transferee",
    "propertyDescription", "summaryOfTransaction"}}.
  - `redFlags` (optional): an array of {{"description", "severity", "suggestion"}}.

{SUMMARY_REQUIREMENTS}

{TITLE_TRANSFER_CRITERIA}

{RED_FLAG_GUIDANCE}
Only report red flags visible in THIS document. Omit `redFlags` if there are none.

{JSON_ONLY_CONTRACT}
"""


def build_batch_task_prompt(
    task_description: str,
    file_name: str,
    total_pages: int,
    batch_num: int,
    total_batches: int,
) -> str:
    """Prompt for one task over one batch of pages."""
    return f"""
You are an expert AI assistant specialized in analyzing legal and property documents.
The user has provided a document named "{file_name}" which has {total_pages} pages.
This is BATCH {batch_num} of {total_batches}. You must analyze ONLY the images provided in this batch.
Your task is to focus ONLY on the following: {task_description}
IMPORTANT: Your analysis for this batch will be combined with other batches later. Do not assume these
pages are the complete set of documents. Extract all relevant details from the pages in THIS BATCH ONLY.
{JSON_ONLY_CONTRACT}
"""


def build_synthesis_prompt(task_description: str, file_name: str, partial_results: List[Any]) -> str:
    """Prompt merging the per-batch partial results of one task."""
    partials_json = json.dumps(partial_results, indent=2, ensure_ascii=False)
    return f"""
You are an expert AI assistant specialized in synthesizing legal and property document analysis.
The user has provided a document named "{file_name}". The document was analyzed in multiple batches.
The following is a JSON array of the partial analysis results from each batch
(entries with an "error" key are batches that failed and must be ignored):
{partials_json}

Your task is to synthesize these partial results into a single, final, and coherent JSON object for the
following task: {task_description}
You must consolidate all the information, remove duplicates, and ensure the final output is a complete and
accurate representation of the entire document. The output must be structured exactly as requested by the task.
{JSON_ONLY_CONTRACT}
"""
