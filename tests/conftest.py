"""Shared archive fixtures: small in-memory KNX projects."""

import io
import zipfile

import pytest

RICH_PROJECT = """<?xml version="1.0" encoding="utf-8"?>
<KNX xmlns="http://knx.org/xml/project/21">
  <Project Id="P-0001">
    <ProjectInformation Name="Demo Huis" />
    <Installations>
      <Installation Name="">
        <Topology>
          <Area Id="P-0001-0_A-1" Name="Hoofdgebouw" Address="1">
            <Line Id="P-0001-0_L-1" Name="Lijn 1" Address="1">
              <DeviceInstance Id="P-0001-0_DI-1" Name="Dimmer" Address="10" ProductRefId="M-0083_H-1">
                <ChannelInstance Id="P-0001-0_DI-1_CH-1" Name="Keuken">
                  <ComObjectInstanceRef Id="P-0001-0_DI-1_O-1" Text="Schakelen" DatapointType="DPST-1-1">
                    <Connectors>
                      <Send GroupAddressRefId="P-0001-0_GA-1" Role="write" />
                      <Receive GroupAddressRefId="P-0001-0_GA-2" Role="state" />
                    </Connectors>
                  </ComObjectInstanceRef>
                  <ComObjectInstanceRef Id="P-0001-0_DI-1_O-2" Text="Helderheid" DatapointType="DPST-5-1">
                    <Connectors>
                      <Send GroupAddressRefId="P-0001-0_GA-3" Role="write" />
                      <Receive GroupAddressRefId="P-0001-0_GA-4" Role="state" />
                    </Connectors>
                  </ComObjectInstanceRef>
                </ChannelInstance>
                <ComObjectInstanceRef Id="P-0001-0_DI-1_O-3" Text="Temperatuur" DatapointType="DPST-9-1"
                                      ReadFlag="Enabled" CommunicationFlag="Enabled">
                  <Connectors>
                    <Receive GroupAddressRefId="P-0001-0_GA-5" />
                  </Connectors>
                </ComObjectInstanceRef>
              </DeviceInstance>
              <DeviceInstance Id="P-0001-0_DI-2" Name="Schakelactor" Address="11">
                <ComObjectInstanceRef Id="P-0001-0_DI-2_O-1" Text="Pomp" DatapointType="DPST-1-1" WriteFlag="Enabled">
                  <Connectors>
                    <Receive GroupAddressRefId="P-0001-0_GA-6" />
                  </Connectors>
                </ComObjectInstanceRef>
              </DeviceInstance>
            </Line>
          </Area>
        </Topology>
        <GroupAddresses>
          <GroupRanges>
            <GroupRange Id="P-0001-0_GR-1" Name="Verlichting" RangeStart="2048" RangeEnd="4095">
              <GroupRange Id="P-0001-0_GR-2" Name="Keuken" RangeStart="2048" RangeEnd="2303">
                <GroupAddress Id="P-0001-0_GA-1" Name="Keuken aan/uit" Address="2049" DatapointType="DPST-1-1" />
                <GroupAddress Id="P-0001-0_GA-2" Name="Keuken status" Address="2050" DatapointType="DPST-1-1" />
                <GroupAddress Id="P-0001-0_GA-3" Name="Keuken helderheid" Address="2051" DatapointType="DPST-5-1" />
                <GroupAddress Id="P-0001-0_GA-4" Name="Keuken helderheid status" Address="2052" DatapointType="DPST-5-1" />
              </GroupRange>
            </GroupRange>
            <GroupRange Id="P-0001-0_GR-3" Name="Klimaat" RangeStart="4096" RangeEnd="6143">
              <GroupAddress Id="P-0001-0_GA-5" Name="Temperatuur woonkamer" Address="4097" DatapointType="DPST-9-1" />
              <GroupAddress Id="P-0001-0_GA-6" Name="Pomp" Address="4098" DatapointType="DPST-1-1" />
              <GroupAddress Id="P-0001-0_GA-7" Name="Reserve" Address="4099" />
              <GroupAddress Id="P-0001-0_GA-8" Name="Buitenlicht" Address="4100" DatapointType="DPST-1-1" Security="On" />
            </GroupRange>
          </GroupRanges>
        </GroupAddresses>
      </Installation>
    </Installations>
  </Project>
</KNX>
"""

FLAT_PROJECT = """<?xml version="1.0" encoding="utf-8"?>
<KNX>
  <Project>
    <ProjectInformation Name="Flat" />
    <GroupAddresses>
      <GroupRanges>
        <GroupAddress Id="F-1" Name="LA1 Keuken" Address="1/1/1" DatapointType="DPST-1-1" />
        <GroupAddress Id="F-2" Name="LA1 Keuken" Address="1/2/1" DatapointType="DPST-3-7" />
        <GroupAddress Id="F-3" Name="LA1 Keuken" Address="1/3/1" DatapointType="DPST-5-1" />
        <GroupAddress Id="F-4" Name="LA1 Keuken" Address="1/4/1" DatapointType="DPST-5-1" />
        <GroupAddress Id="F-5" Name="LA1 Keuken" Address="1/5/1" DatapointType="DPST-1-1" />
        <GroupAddress Id="F-6" Name="Tuin" Address="2/0/1" DatapointType="DPST-1-1" />
        <GroupAddress Id="F-7" Name="Tuin status" Address="2/0/2" DatapointType="DPST-1-1" />
        <GroupAddress Id="F-8" Name="Rolluik" Address="3/0/1" DatapointType="DPST-1-8" />
        <GroupAddress Id="F-9" Name="Rolluik stop" Address="3/0/2" DatapointType="DPST-1-10" />
        <GroupAddress Id="F-10" Name="Temperatuur" Address="4/0/1" DatapointType="DPST-9-1" />
        <GroupAddress Id="F-11" Name="Reserve" Address="4/0/2" DatapointType="DPST-1-1" />
      </GroupRanges>
    </GroupAddresses>
  </Project>
</KNX>
"""

BROKEN_DOCUMENT = """<GroupAddresses>
  <GroupAddress Id="X-1" Name="Kapot" Address="5/0/1" DatapointType="DPST-1-1" />
  <GroupAddress Id="X-2" Name="Ook kapot" Address="5/0/2" DatapointType="DPST-9-1">
  <unclosed
"""

COMPONENT_PROJECT = """<KNX>
  <Project><ProjectInformation Name="Componenten" /><GroupAddresses>
    <GroupAddress Id="C-1" Name="Negatief" MainGroup="-1" MiddleGroup="0" SubGroup="1" DatapointType="DPST-1-1" />
    <GroupAddress Id="C-2" Name="Te groot" MainGroup="99" MiddleGroup="12" SubGroup="999" DatapointType="DPST-1-1" />
    <GroupAddress Id="C-3" Name="Goed" MainGroup="31" MiddleGroup="7" SubGroup="255" DatapointType="DPST-1-1" />
  </GroupAddresses></Project>
</KNX>
"""

QUOTED_BROKEN_DOCUMENT = """<GroupAddresses>
  <GroupAddress Id='Q-1' Name='Enkel' Address='6/0/1' DatapointType='DPST-1-1' />
  <unclosed
"""

IRRELEVANT_DOCUMENT = "<Catalog><Item Name='Hardware' /></Catalog>"


def make_archive(members: dict[str, str | bytes]) -> bytes:
    """Zip the given members in order and return the archive bytes."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in members.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def rich_archive() -> bytes:
    return make_archive({"P-0001/0.xml": RICH_PROJECT, "P-0001/Catalog.xml": IRRELEVANT_DOCUMENT})


@pytest.fixture
def flat_archive() -> bytes:
    return make_archive({"P-0002/0.xml": FLAT_PROJECT})


@pytest.fixture
def broken_archive() -> bytes:
    return make_archive({"P-0003/0.xml": BROKEN_DOCUMENT})
