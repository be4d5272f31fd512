from typing import Dict, List, Optional

from pydantic import BaseModel


class ImageStyle(BaseModel):
    id: str
    name: str
    description: str
    prompt: str


IMAGE_STYLES: Dict[str, ImageStyle] = {s.id: s for s in [
    ImageStyle(
        id="3d-animation",
        name="3D Animation",
        description="Disney Pixar style 3D animated characters and scenes",
        prompt="disney style, pixar style, 3d model",
    ),
    ImageStyle(
        id="photorealistic",
        name="Photorealistic",
        description="Realistic, lifelike images that look like photographs",
        prompt="photorealistic, realistic, high detail",
    ),
    ImageStyle(
        id="sketched",
        name="Sketched",
        description="Hand-drawn pencil sketch style",
        prompt="pencil sketch, hand drawn, line art, sketchy",
    ),
    ImageStyle(
        id="ghibli",
        name="Studio Ghibli",
        description="Studio Ghibli anime style with soft colors and dreamy atmosphere",
        prompt="studio ghibli style, anime, soft colors, dreamy",
    ),
    ImageStyle(
        id="eightbit",
        name="8-bit Pixel Art",
        description="Retro 8-bit video game pixel art style",
        prompt="8-bit pixel art, retro game style, pixelated",
    ),
    ImageStyle(
        id="kurz-gesagt",
        name="Kurzgesagt",
        description="Flat design infographic style with bold colors",
        prompt="kurzgesagt style, flat design, infographic, bold colors",
    ),
    ImageStyle(
        id="infographics",
        name="Infographics",
        description="Clean infographic style with charts and data visualization",
        prompt="infographic style, clean design, data visualization",
    ),
    ImageStyle(
        id="pooh",
        name="Classic Book Illustration",
        description="Classic children's book illustration style like Winnie the Pooh",
        prompt="classic book illustration, watercolor, storybook art",
    ),
]}

DEFAULT_STYLE_ID = "3d-animation"


def get_style(style_id: Optional[str]) -> ImageStyle:
    return IMAGE_STYLES.get(style_id or DEFAULT_STYLE_ID, IMAGE_STYLES[DEFAULT_STYLE_ID])


def get_style_prompt(style_id: Optional[str]) -> str:
    # Picsart and Replicate both serve Flux models, so one descriptor per style
    return get_style(style_id).prompt


def apply_style_to_prompt(prompt: str, style_id: Optional[str]) -> str:
    return f"{prompt}, {get_style_prompt(style_id)}"


def list_styles() -> List[ImageStyle]:
    return list(IMAGE_STYLES.values())
