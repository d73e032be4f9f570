from typing import Optional

from pydantic import BaseModel, Field, field_validator


class UTMParams(BaseModel):
    """UTM tracking parameters appended to the destination URL.

    Args:
        utm_source (Optional[str]): Traffic source, e.g. newsletter.
        utm_medium (Optional[str]): Marketing medium, e.g. email.
        utm_campaign (Optional[str]): Campaign name.
        utm_term (Optional[str]): Paid search keywords.
        utm_content (Optional[str]): Content variant.
    """

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None


class CreateLink(BaseModel):
    """Request model for creating a new shortened URL.

    Args:
        original_url (str): The original URL to be shortened.
        custom_slug (Optional[str]): Optional custom slug, bypasses generation.
        description (Optional[str]): Optional free-text description.
        utm_params (Optional[UTMParams]): Optional UTM parameters.
    """

    original_url: str = Field(
        ...,
        description="Original URL to be shortened",
        examples=["https://example.com"],
    )
    custom_slug: Optional[str] = Field(
        None,
        description="Optional custom slug made of letters, digits and hyphens",
        pattern=r"^[a-zA-Z0-9-]+$",
        max_length=64,
        examples=["spring-sale"],
    )
    description: Optional[str] = Field(
        None,
        description="Optional description of the link",
        max_length=500,
    )
    utm_params: Optional[UTMParams] = None

    @field_validator("original_url")
    @classmethod
    def validate_scheme(cls, value: str) -> str:
        """Only absolute http(s) URLs can be shortened."""
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return value


class LinkResponse(BaseModel):
    """Response model for a created link."""

    slug: str
    short_url: str
    original_url: str
    description: Optional[str] = None


class LinkDetails(LinkResponse):
    """Response model for a stored link with its click total."""

    click_count: int = 0


class UpdateLink(BaseModel):
    """Request model for changing a link's description."""

    description: Optional[str] = Field(None, max_length=500)
