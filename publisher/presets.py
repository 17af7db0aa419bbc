"""Encoding presets translated into MediaConvert job settings.

A preset is an H.264 bitrate ladder. Every job writes the ladder four ways
under the output asset's prefix:

    <stem>_<height>p_<kbps>.mp4   progressive download renditions
    hls/<stem>.m3u8               HLS master playlist
    dash/<stem>.mpd               MPEG-DASH manifest
    smooth/<stem>.ism             Smooth Streaming server manifest
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Rendition:
    width: int
    height: int
    bitrate: int  # bps
    profile: str = "MAIN"

    @property
    def label(self) -> str:
        return f"{self.height}p_{self.bitrate // 1000}"


@dataclass(frozen=True)
class Preset:
    name: str
    renditions: list = field(default_factory=list)
    audio_bitrate: int = 128000
    segment_seconds: int = 6
    gop_seconds: float = 2.0


PRESETS = {
    "H264 Multiple Bitrate 720p": Preset(
        name="H264 Multiple Bitrate 720p",
        renditions=[
            Rendition(1280, 720, 3400000, "HIGH"),
            Rendition(960, 540, 2250000, "HIGH"),
            Rendition(960, 540, 1500000),
            Rendition(640, 360, 1000000),
            Rendition(640, 360, 650000),
            Rendition(320, 180, 400000, "BASELINE"),
        ],
    ),
}

HLS_DIR = "hls"
DASH_DIR = "dash"
SMOOTH_DIR = "smooth"


def get_preset(name: str) -> Preset:
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown encoding preset: {name!r}. Known: {sorted(PRESETS)}") from None


def _video(r: Rendition, preset: Preset) -> dict:
    return {
        "Width": r.width,
        "Height": r.height,
        "CodecSettings": {
            "Codec": "H_264",
            "H264Settings": {
                "RateControlMode": "CBR",
                "Bitrate": r.bitrate,
                "CodecProfile": r.profile,
                "GopSize": preset.gop_seconds,
                "GopSizeUnits": "SECONDS",
                "SceneChangeDetect": "TRANSITION_DETECTION",
            },
        },
    }


def _audio(preset: Preset) -> dict:
    return {
        "AudioSourceName": "Audio Selector 1",
        "CodecSettings": {
            "Codec": "AAC",
            "AacSettings": {
                "Bitrate": preset.audio_bitrate,
                "CodingMode": "CODING_MODE_2_0",
                "SampleRate": 48000,
            },
        },
    }


def _file_group(preset: Preset, destination: str) -> dict:
    return {
        "Name": "File Group",
        "OutputGroupSettings": {
            "Type": "FILE_GROUP_SETTINGS",
            "FileGroupSettings": {"Destination": destination},
        },
        "Outputs": [
            {
                "NameModifier": f"_{r.label}",
                "ContainerSettings": {"Container": "MP4"},
                "VideoDescription": _video(r, preset),
                "AudioDescriptions": [_audio(preset)],
            }
            for r in preset.renditions
        ],
    }


def _hls_group(preset: Preset, destination: str) -> dict:
    # HLS takes muxed renditions
    return {
        "Name": "HLS",
        "OutputGroupSettings": {
            "Type": "HLS_GROUP_SETTINGS",
            "HlsGroupSettings": {
                "Destination": destination,
                "SegmentLength": preset.segment_seconds,
                "MinSegmentLength": 0,
            },
        },
        "Outputs": [
            {
                "NameModifier": f"_{r.label}",
                "ContainerSettings": {"Container": "M3U8"},
                "VideoDescription": _video(r, preset),
                "AudioDescriptions": [_audio(preset)],
            }
            for r in preset.renditions
        ],
    }


def _split_outputs(preset: Preset, container: str) -> list:
    # DASH and Smooth want one elementary stream per output
    outputs = [
        {
            "NameModifier": f"_{r.label}",
            "ContainerSettings": {"Container": container},
            "VideoDescription": _video(r, preset),
        }
        for r in preset.renditions
    ]
    outputs.append(
        {
            "NameModifier": "_audio",
            "ContainerSettings": {"Container": container},
            "AudioDescriptions": [_audio(preset)],
        }
    )
    return outputs


def _dash_group(preset: Preset, destination: str) -> dict:
    return {
        "Name": "DASH ISO",
        "OutputGroupSettings": {
            "Type": "DASH_ISO_GROUP_SETTINGS",
            "DashIsoGroupSettings": {
                "Destination": destination,
                "SegmentLength": preset.segment_seconds,
                "FragmentLength": 2,
            },
        },
        "Outputs": _split_outputs(preset, "MPD"),
    }


def _smooth_group(preset: Preset, destination: str) -> dict:
    return {
        "Name": "MS Smooth",
        "OutputGroupSettings": {
            "Type": "MS_SMOOTH_GROUP_SETTINGS",
            "MsSmoothGroupSettings": {
                "Destination": destination,
                "FragmentLength": 2,
                "ManifestEncoding": "UTF8",
            },
        },
        "Outputs": _split_outputs(preset, "ISMV"),
    }


def build_job_settings(preset_name: str, input_uri: str, destination: str, stem: str) -> dict:
    """
    MediaConvert `Settings` for one input and every output group of the preset.
    `destination` is the output asset's s3:// prefix, ending in "/".
    """
    preset = get_preset(preset_name)
    return {
        "Inputs": [
            {
                "FileInput": input_uri,
                "AudioSelectors": {"Audio Selector 1": {"DefaultSelection": "DEFAULT"}},
                "VideoSelector": {},
                "TimecodeSource": "ZEROBASED",
            }
        ],
        "OutputGroups": [
            _file_group(preset, f"{destination}{stem}"),
            _hls_group(preset, f"{destination}{HLS_DIR}/{stem}"),
            _dash_group(preset, f"{destination}{DASH_DIR}/{stem}"),
            _smooth_group(preset, f"{destination}{SMOOTH_DIR}/{stem}"),
        ],
    }
