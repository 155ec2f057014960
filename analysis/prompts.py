"""
Prompt templates and context builders for portfolio analysis.
Centralized prompt management for image, video, project and portfolio analysis.
"""

from typing import Iterable, List, Optional

from .constants import ANALYSIS_SEPARATOR
from .models import CreatorContext, Project

NO_DESCRIPTION = "No description provided"

# ============================================================================
# PROMPT TEMPLATES
# ============================================================================

IMAGE_ANALYSIS_PROMPT = """As a professional creative curator, provide a detailed analysis of this image focusing on:

1. Technical Aspects:
   - Composition and framing
   - Lighting techniques used
   - Color palette and treatment
   - Technical quality and execution
   - Typography and text elements

2. Creative Elements:
   - Main subject and focal points
   - Style and artistic approach
   - Mood and atmosphere
   - Visual storytelling elements
   - Quality of the message on the image

3. Professional Context:
   - Apparent purpose or commercial application
   - Target audience or market segment
   - Production value indicators
   - Industry-specific elements
   - How the copy and the image work together"""

VIDEO_ANALYSIS_PROMPT = """As a professional video content analyst, provide a detailed technical and creative analysis of this video focusing on:

Technical Aspects:
- Cinematography (shot composition, camera movement, framing choices)
- Lighting design and execution (exposure, contrast, practical vs. artificial)
- Color grading and visual treatment
- Audio quality (sound design, mixing, music integration)
- Edit pacing and post-production elements

Creative Elements:
- Visual narrative structure and storytelling approach
- Movement and timing choices
- Mood development and atmosphere building
- Performance and subject presentation
- Scene transitions and story progression

Professional Context:
- Production value indicators and industry standards alignment
- Target audience considerations and engagement approach
- Platform optimization and delivery format
- Commercial or artistic intent markers

Keep the analysis objective and focused on observable elements. Use professional terminology while maintaining clarity. Format as a continuous, detailed paragraph without headers or sections."""

PROJECT_ANALYSIS_PROMPT = """As a professional creative director, analyze this creative project focusing on:

1. Overall concept and creative direction
   - Visual style and aesthetic approach
   - Technical execution and production quality
   - Target audience and commercial potential
   - Creative innovation and unique elements

2. Technical proficiency
   - Visual consistency and brand alignment
   - Production standards and execution quality
   - Technical tools and methodologies used

3. Market positioning
   - Commercial viability and applications
   - Industry alignment and relevance
   - Unique value proposition"""

PORTFOLIO_ANALYSIS_PROMPT = """As a creative director, analyze this creator's body of work across multiple projects.
First, list the titles of the projects in the portfolio.
Then, focus on:

1. Professional Identity and Market Position:
   - Target industries and market segments
   - Client types and commercial focus
   - Professional specializations

2. Creative and Technical Expertise:
   - Signature style and distinctive elements
   - Technical proficiency and specialties
   - Production value and quality standards

3. Portfolio Strategy:
   - Project diversity and specialization balance
   - Industry alignment and market relevance
   - Portfolio cohesion and professional narrative

4. Commercial Viability:
   - Target audience understanding
   - Industry trend alignment
   - Unique value proposition"""


class PromptBuilder:
    """
    Builds the text sent to the model for each entity level.
    """

    # ============================================================================
    # CONTEXT BUILDERS
    # ============================================================================

    @staticmethod
    def combine_analyses(analyses: Iterable[Optional[str]]) -> List[str]:
        """Non-blank analyses, stripped, in their original order."""
        return [a.strip() for a in analyses if a and a.strip()]

    @staticmethod
    def build_project_context(project: Project, media_analyses: List[str]) -> str:
        """
        Build the synthesized context for a project from its media analyses.

        Args:
            project: Project being analyzed
            media_analyses: Analysis text of every successful child media item

        Returns:
            Context block appended to the project prompt
        """
        media_context = ANALYSIS_SEPARATOR.join(media_analyses)
        return (
            f"Project Title: {project.title}\n"
            f"Project Description: {project.description or NO_DESCRIPTION}\n\n"
            f"Number of analyzed media items: {len(media_analyses)}\n\n"
            f"Media analysis summaries:\n{media_context}"
        )

    @staticmethod
    def build_portfolio_context(projects: List[Project], creator: Optional[CreatorContext]) -> str:
        """
        Build the synthesized context for a portfolio from its analyzed projects.

        Args:
            projects: Successfully analyzed projects of the portfolio
            creator: Creator details, or None when unavailable

        Returns:
            Context block appended to the portfolio prompt
        """
        lines = [f"Analyzing a professional portfolio of {len(projects)} projects:", ""]

        if creator:
            lines.append(f"Creator: {creator.username}")
            if creator.primary_role:
                lines.append(f"Primary Role: {creator.primary_role}")
            if creator.bio:
                lines.append(f"Bio: {creator.bio}")
        else:
            lines.append("Creator information not available.")
        lines.append("")

        lines.append("Analyzed Projects:")
        for project in projects:
            lines.append("---")
            lines.append(f"Project: {project.title}")
            lines.append(f"Description: {project.description or NO_DESCRIPTION}")
            lines.append(f"AI Analysis Summary: {project.ai_analysis}")
        lines.append("---")

        return "\n".join(lines)

    @staticmethod
    def with_context(prompt: str, context: str) -> str:
        return f"{prompt}\n\n{context}"
