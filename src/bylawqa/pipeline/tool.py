"""Shape verified results for the agent tool-calling layer."""

from bylawqa.core.types import BylawToolCitation, BylawToolResult, VerifiedSearchResult

NO_RESULTS_MESSAGE = "No relevant bylaws found for this query."


def to_tool_result(results: list[VerifiedSearchResult]) -> BylawToolResult:
    if not results:
        return BylawToolResult(found=False, message=NO_RESULTS_MESSAGE)
    return BylawToolResult(
        found=True,
        results=[
            BylawToolCitation(
                bylaw_number=r.bylaw_number,
                title=r.title,
                section=r.section,
                section_title=r.section_title,
                content=r.content,
                url=r.official_url or r.pdf_path or None,
                is_consolidated=r.is_consolidated,
                consolidated_date=r.consolidated_date,
            )
            for r in results
        ],
    )
