from models.funnel import FunnelAnalysis

# Exit reason tags reported by the in-app exit survey
EXIT_REASON_RECOMMENDATIONS: dict[str, str] = {
    "too_difficult": "Simplify vTPR difficulty progression",
    "technical_issues": "Improve technical stability",
    "too_long": "Split story chapters into shorter sessions",
    "not_interested": "Offer more interest-matched story content",
    "confusing_instructions": "Clarify the vTPR instructions with a guided first clue",
    "audio_issues": "Add subtitles and replay controls for clue audio",
    "slow_loading": "Preload the next video clip during the current clue",
}

# Applied when the step is the major drop-off and loses at least MAJOR_DROP_OFF_RATE of users
STEP_RECOMMENDATIONS: dict[str, str] = {
    "onboarding_complete": "Shorten the onboarding carousel",
    "interest_selected": "Reduce the number of interest choices shown at once",
    "vtpr_complete": "Add hints after the second incorrect vTPR attempt",
    "activation": "Surface the magic moment earlier in the first story",
}
MAJOR_DROP_OFF_RATE = 0.5

# Users lingering this long on a step get an encouragement checkpoint
ENCOURAGEMENT_AFTER_MS = 180_000


def recommend(analysis: FunnelAnalysis) -> list[str]:
    """Map a funnel analysis to recommendations via the fixed rule tables, without duplicates."""
    recommendations: list[str] = []

    def add(text: str):
        if text not in recommendations:
            recommendations.append(text)

    for reason in analysis.common_exit_reasons:
        if reason in EXIT_REASON_RECOMMENDATIONS:
            add(EXIT_REASON_RECOMMENDATIONS[reason])

    if analysis.major_drop_off in STEP_RECOMMENDATIONS and analysis.drop_off_rate >= MAJOR_DROP_OFF_RATE:
        add(STEP_RECOMMENDATIONS[analysis.major_drop_off])

    if analysis.avg_time_at_step >= ENCOURAGEMENT_AFTER_MS:
        minutes = int(analysis.avg_time_at_step // 60_000)
        add(f"Add progress encouragement at {minutes}-minute mark")

    return recommendations
