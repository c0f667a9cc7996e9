"""Default package family names kept or removed by the AppX removal step."""
from __future__ import annotations

from typing import Tuple

# Family names that are never removed in safe mode.
SAFE_PACKAGE_FAMILIES: Tuple[str, ...] = (
    "Microsoft.549981C3F5F10_8wekyb3d8bbwe",
    "Microsoft.ApplicationCompatibilityEnhancements_8wekyb3d8bbwe",
    "Microsoft.AV1VideoExtension_8wekyb3d8bbwe",
    "Microsoft.AVCEncoderVideoExtension_8wekyb3d8bbwe",
    "Microsoft.CompanyPortal_8wekyb3d8bbwe",
    "Microsoft.DesktopAppInstaller_8wekyb3d8bbwe",
    "Microsoft.HEIFImageExtension_8wekyb3d8bbwe",
    "Microsoft.HEVCVideoExtension_8wekyb3d8bbwe",
    "Microsoft.MicrosoftEdge.Stable_8wekyb3d8bbwe",
    "Microsoft.MPEG2VideoExtension_8wekyb3d8bbwe",
    "Microsoft.Paint_8wekyb3d8bbwe",
    "Microsoft.RawImageExtension_8wekyb3d8bbwe",
    "Microsoft.ScreenSketch_8wekyb3d8bbwe",
    "Microsoft.SecHealthUI_8wekyb3d8bbwe",
    "Microsoft.StorePurchaseApp_8wekyb3d8bbwe",
    "Microsoft.VP9VideoExtensions_8wekyb3d8bbwe",
    "Microsoft.WebMediaExtensions_8wekyb3d8bbwe",
    "Microsoft.WebpImageExtension_8wekyb3d8bbwe",
    "Microsoft.Windows.Photos_8wekyb3d8bbwe",
    "Microsoft.WindowsAlarms_8wekyb3d8bbwe",
    "Microsoft.WindowsCalculator_8wekyb3d8bbwe",
    "Microsoft.WindowsCamera_8wekyb3d8bbwe",
    "Microsoft.WindowsNotepad_8wekyb3d8bbwe",
    "Microsoft.WindowsSoundRecorder_8wekyb3d8bbwe",
    "Microsoft.WindowsStore_8wekyb3d8bbwe",
    "Microsoft.WindowsTerminal_8wekyb3d8bbwe",
    "Microsoft.Winget.Source_8wekyb3d8bbwe",
    "MicrosoftCorporationII.QuickAssist_8wekyb3d8bbwe",
    "MicrosoftWindows.CrossDevice_cw5n1h2txyewy",
)

# Glob patterns matched against family names; any match keeps the package.
SAFE_PACKAGE_WILDCARDS: Tuple[str, ...] = (
    "Microsoft.Windows.*",
    "MicrosoftWindows.Client.*",
    "Microsoft.VCLibs.*",
    "Microsoft.NET.Native.*",
    "Microsoft.UI.Xaml.*",
    "*.Extension_*",
    "Microsoft.LanguageExperiencePack*",
)

# Packages re-added by feature updates, removed in targeted mode.
TARGETED_PACKAGE_FAMILIES: Tuple[str, ...] = (
    "Clipchamp.Clipchamp_yxz26nhyzhsrt",
    "Microsoft.BingNews_8wekyb3d8bbwe",
    "Microsoft.BingWeather_8wekyb3d8bbwe",
    "Microsoft.GamingApp_8wekyb3d8bbwe",
    "Microsoft.MicrosoftSolitaireCollection_8wekyb3d8bbwe",
    "Microsoft.OutlookForWindows_8wekyb3d8bbwe",
    "Microsoft.Xbox.TCUI_8wekyb3d8bbwe",
    "Microsoft.XboxGameOverlay_8wekyb3d8bbwe",
    "Microsoft.XboxGamingOverlay_8wekyb3d8bbwe",
    "Microsoft.XboxIdentityProvider_8wekyb3d8bbwe",
    "Microsoft.XboxSpeechToTextOverlay_8wekyb3d8bbwe",
    "MicrosoftCorporationII.MicrosoftFamily_8wekyb3d8bbwe",
    "MicrosoftTeams_8wekyb3d8bbwe",
)
