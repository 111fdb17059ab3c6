"""Generation types: provider model, credit cost and input builders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse


MEDIA_AUDIO = "audio"
MEDIA_IMAGE = "image"
MEDIA_VIDEO = "video"

VALID_STEMS = ("vocals", "bass", "drums", "piano", "guitar", "other")
MAX_LYRICS_LENGTH = 600

_LYRICS_TARGETS = {
    "short": (200, 300),
    "medium": (350, 500),
    "long": (500, 600),
}


class GenerationValidationError(ValueError):
    """Raised when a generation payload cannot be turned into provider input."""


@dataclass(frozen=True)
class GenerationSpec:
    type: str
    media_type: str
    model: str
    version: Optional[str]
    cost: Callable[[Dict[str, Any]], int]
    build_input: Callable[[Dict[str, Any]], Dict[str, Any]]
    default_title: str


def _text(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    return value.strip() if isinstance(value, str) else ""


def _number(params: Dict[str, Any], key: str, default: float) -> float:
    value = params.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _require_prompt(params: Dict[str, Any], message: str = "Missing prompt") -> str:
    prompt = _text(params, "prompt")
    if not prompt:
        raise GenerationValidationError(message)
    return prompt


def _require_url(params: Dict[str, Any], key: str) -> str:
    url = _text(params, key)
    if not url:
        raise GenerationValidationError(f"{key} required")
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise GenerationValidationError(f"{key} must be an http(s) URL")
    return url


def _truncate_lyrics(value: str) -> str:
    if len(value) > MAX_LYRICS_LENGTH:
        return value[: MAX_LYRICS_LENGTH - 3] + "..."
    return value


def expand_lyrics_for_duration(base_lyrics: str, duration: str = "medium") -> str:
    """Repeat verse/chorus sections until the lyrics reach the duration's target length."""

    minimum, _ = _LYRICS_TARGETS.get(duration, _LYRICS_TARGETS["medium"])
    if len(base_lyrics) >= minimum:
        return _truncate_lyrics(base_lyrics)

    opening = "\n".join(base_lyrics.split("\n")[:2])
    expanded = f"{base_lyrics}\n\n[Verse 2]\n{base_lyrics}"
    if len(expanded) < minimum:
        expanded += f"\n\n[Chorus]\n{opening}"
    if duration == "long" and len(expanded) < minimum:
        expanded += f"\n\n[Bridge]\n{opening}"
    return _truncate_lyrics(expanded)


def _music_input(params: Dict[str, Any]) -> Dict[str, Any]:
    title = _text(params, "title")
    if not 3 <= len(title) <= 100:
        raise GenerationValidationError("Title required (3-100 chars)")
    prompt = _text(params, "prompt")
    if not 10 <= len(prompt) <= 300:
        raise GenerationValidationError("Prompt required (10-300 chars)")

    duration = _text(params, "duration") or "medium"
    lyrics = _text(params, "lyrics") or f"[Verse]\n{prompt}"
    return {
        "prompt": prompt,
        "lyrics": expand_lyrics_for_duration(lyrics, duration),
        "bitrate": int(_number(params, "bitrate", 256000)),
        "sample_rate": int(_number(params, "sample_rate", 44100)),
        "audio_format": _text(params, "audio_format") or "mp3",
    }


def _image_input(params: Dict[str, Any]) -> Dict[str, Any]:
    prompt = _require_prompt(params)
    options = params.get("params") if isinstance(params.get("params"), dict) else {}
    return {
        "prompt": prompt,
        "aspect_ratio": options.get("aspect_ratio", "1:1"),
        "output_format": options.get("output_format", "jpg"),
        "output_quality": options.get("output_quality", 95),
        "output_megapixels": options.get("output_megapixels", "1"),
        "guidance": options.get("guidance", 4),
        "go_fast": True,
    }


def _effects_input(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "prompt": _require_prompt(params),
        "duration": _clamp(_number(params, "duration", 5), 1, 10),
        "output_format": _text(params, "output_format") or "mp3",
    }


def _loops_max_duration(params: Dict[str, Any]) -> float:
    return _clamp(_number(params, "max_duration", 8), 1, 20)


def _loops_input(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "prompt": _require_prompt(params),
        "bpm": int(_number(params, "bpm", 120)),
        "max_duration": _loops_max_duration(params),
        "variations": int(_clamp(_number(params, "variations", 2), 1, 2)),
        "model_version": _text(params, "model_version") or "large",
        "output_format": _text(params, "output_format") or "wav",
    }


def _stems_input(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "music_input": _require_url(params, "audioUrl"),
        "model": "harmonix-all",
        "sonify": False,
        "visualize": False,
        "audioSeparator": True,
        "include_embeddings": False,
        "include_activations": False,
    }


def _extract_input(params: Dict[str, Any]) -> Dict[str, Any]:
    audio_url = _require_url(params, "audioUrl")
    stem = _text(params, "stem") or "vocals"
    if stem not in VALID_STEMS:
        raise GenerationValidationError(f"Invalid stem. Choose: {', '.join(VALID_STEMS)}")
    model_name = "htdemucs_6s" if stem in {"guitar", "piano"} else (_text(params, "model_name") or "htdemucs_6s")
    return {
        "audio": audio_url,
        "stem": stem,
        "shifts": int(_number(params, "shifts", 1)),
        "overlap": _number(params, "overlap", 0.25),
        "clip_mode": _text(params, "clip_mode") or "rescale",
        "model_name": model_name,
        "mp3_bitrate": int(_number(params, "mp3_bitrate", 320)),
        "output_format": _text(params, "output_format") or "mp3",
    }


def _audio_boost_input(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "audio": _require_url(params, "audioUrl"),
        "bass_boost": _number(params, "bass_boost", 0),
        "treble_boost": _number(params, "treble_boost", 0),
        "volume_boost": _number(params, "volume_boost", 2),
        "normalize": params.get("normalize") is not False,
        "noise_reduction": params.get("noise_reduction") is True,
        "output_format": _text(params, "output_format") or "mp3",
        "bitrate": _text(params, "bitrate") or "192k",
    }


def _is_hq(params: Dict[str, Any]) -> bool:
    return _text(params, "quality") == "hq"


def _video_to_audio_input(params: Dict[str, Any]) -> Dict[str, Any]:
    video_url = _require_url(params, "videoUrl")
    prompt = _require_prompt(params, "prompt required, describe the sounds you want")
    if _is_hq(params):
        return {
            "video": video_url,
            "prompt": prompt,
            "return_audio": False,
            "guidance_scale": 4.5,
            "num_inference_steps": 50,
        }
    return {
        "video": video_url,
        "prompt": prompt,
        "duration": 8,
        "num_steps": 25,
        "cfg_strength": 4.5,
        "negative_prompt": "music",
        "seed": -1,
    }


def _fixed(cost: int) -> Callable[[Dict[str, Any]], int]:
    return lambda _params: cost


GENERATION_SPECS: Dict[str, GenerationSpec] = {
    spec.type: spec
    for spec in (
        GenerationSpec(
            type="music",
            media_type=MEDIA_AUDIO,
            model="minimax/music-1.5",
            version=None,
            cost=_fixed(2),
            build_input=_music_input,
            default_title="Untitled Track",
        ),
        GenerationSpec(
            type="image",
            media_type=MEDIA_IMAGE,
            model="black-forest-labs/flux-2-klein-9b-base",
            version=None,
            cost=_fixed(1),
            build_input=_image_input,
            default_title="Cover Art",
        ),
        GenerationSpec(
            type="effects",
            media_type=MEDIA_AUDIO,
            model="sepal/audiogen",
            version="154b3e5141493cb1b8cec976d9aa90f2b691137e39ad906d2421b74c2a8c52b8",
            cost=_fixed(2),
            build_input=_effects_input,
            default_title="Sound Effect",
        ),
        GenerationSpec(
            type="loops",
            media_type=MEDIA_AUDIO,
            model="andreasjansson/musicgen-looper",
            version="f8140d0457c2b39ad8728a80736fea9a67a0ec0cd37b35f40b68cce507db2366",
            cost=lambda params: 6 if _loops_max_duration(params) <= 10 else 7,
            build_input=_loops_input,
            default_title="Loop",
        ),
        GenerationSpec(
            type="stems",
            media_type=MEDIA_AUDIO,
            model="all-in-one-audio",
            version="f2a8516c9084ef460592deaa397acd4a97f60f18c3d15d273644c72500cdff0e",
            cost=_fixed(5),
            build_input=_stems_input,
            default_title="Stem Split",
        ),
        GenerationSpec(
            type="extract",
            media_type=MEDIA_AUDIO,
            model="demucs",
            version="25a173108cff36ef9f80f854c162d01df9e6528be175794b81158fa03836d953",
            cost=_fixed(1),
            build_input=_extract_input,
            default_title="Extracted Audio",
        ),
        GenerationSpec(
            type="audio-boost",
            media_type=MEDIA_AUDIO,
            model="lucataco/audio-boost",
            version=None,
            cost=_fixed(1),
            build_input=_audio_boost_input,
            default_title="Boosted Audio",
        ),
        GenerationSpec(
            type="video-to-audio",
            media_type=MEDIA_VIDEO,
            model="zsxkib/mmaudio",
            version="62871fb59889b2d7c13777f08deb3b36bdff88f7e1d53a50ad7694548a41b484",
            cost=lambda params: 10 if _is_hq(params) else 2,
            build_input=_video_to_audio_input,
            default_title="Video SFX",
        ),
    )
}

_HQ_VIDEO_MODEL = (
    "tencent/hunyuanvideo-foley",
    "88045928bb97971cffefabfc05a4e55e5bb1c96d475ad4ecc3d229d9169758ae",
)


def get_generation_spec(generation_type: str) -> GenerationSpec:
    spec = GENERATION_SPECS.get((generation_type or "").strip().lower())
    if spec is None:
        raise GenerationValidationError(
            f"Invalid type. Must be one of: {', '.join(sorted(GENERATION_SPECS))}"
        )
    return spec


def credit_cost(generation_type: str, params: Dict[str, Any]) -> int:
    return get_generation_spec(generation_type).cost(params)


def resolve_model(spec: GenerationSpec, params: Dict[str, Any]) -> tuple[str, Optional[str]]:
    if spec.type == "video-to-audio" and _is_hq(params):
        return _HQ_VIDEO_MODEL
    return spec.model, spec.version


def title_for(spec: GenerationSpec, params: Dict[str, Any]) -> str:
    title = _text(params, "title") or _text(params, "trackTitle")
    if title:
        return title[:100]
    prompt = _text(params, "prompt")
    if prompt and spec.type != "music":
        return f"{spec.default_title}: {prompt[:50]}"[:100]
    return spec.default_title
