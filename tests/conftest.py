"""Shared fixtures: a small unidrv-based printer driver bundle."""

from pathlib import Path

import pytest

SAMPLE_INF = r"""; Sample printer driver
[Version]
Signature="$Windows NT$"
Class=Printer
ClassGuid={4D36E979-E325-11CE-BFC1-08002BE10318}
Provider=%HP%
DriverVer=06/21/2023,61.2.5.12345
CatalogFile=hpsample.cat

[Manufacturer]
%HP%=HP,NTamd64.6.1

[HP.NTamd64.6.1]
%Model1% = DRIVER_INSTALL, USBPRINT\HPLaserJet_Pro1234, LaserJet_Pro
%Model2% = DRIVER_INSTALL, USBPRINT\HPColor_LaserJet5678

[DRIVER_INSTALL]
CopyFiles=DriverFiles,@hpsample.gpd
DataFile=hpsample.gpd
DriverFile=unidrv.dll

[DriverFiles]
unidrv.dll
unidrvui.dll

[DestinationDirs]
DefaultDestDir=66000

[SourceDisksNames.amd64]
1 = %Disk1%,,,

[SourceDisksFiles.amd64]
unidrv.dll = 1
unidrvui.dll = 1
hpsample.gpd = 1

[Strings]
HP = "HP"
Model1 = "HP LaserJet Pro"
Model2 = "HP Color LaserJet"
Disk1 = "HP Driver Disk"
"""


def write_driver_tree(root: Path, inf_text: str = SAMPLE_INF) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "hpsample.inf").write_text(inf_text, encoding="utf-8")
    (root / "unidrv.dll").write_bytes(b"MZ unidrv" * 100)
    (root / "unidrvui.dl_").write_bytes(b"SZDD compressed ui")
    (root / "hpsample.gpd").write_text("*GPDFileVersion: 1.0\n", encoding="utf-8")
    return root


@pytest.fixture
def driver_tree(tmp_path: Path) -> Path:
    return write_driver_tree(tmp_path / "driver")
