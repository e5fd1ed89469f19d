"""
DOCX assembly: writes renderer output elements into a python-docx Document.

Every visual decision has already been made by the renderer; this module
only translates Paragraph/Run/Table values into WordprocessingML, keeping
child elements in schema order so Word opens the file without repair.
"""

from __future__ import annotations

import logging
from io import BytesIO

from docx import Document
from docx.enum.style import WD_STYLE_TYPE
from docx.enum.table import WD_CELL_VERTICAL_ALIGNMENT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.shared import Inches, Pt, RGBColor

from mdword.elements import Paragraph, Run, Table
from mdword.style import DEFAULT_STYLE, StyleConfig

logger = logging.getLogger(__name__)

# Elements that must follow w:pBdr / w:shd inside w:pPr.
_PPR_AFTER_SHD = (
    "w:tabs", "w:suppressAutoHyphens", "w:kinsoku", "w:wordWrap", "w:overflowPunct",
    "w:topLinePunct", "w:autoSpaceDE", "w:autoSpaceDN", "w:bidi", "w:adjustRightInd",
    "w:snapToGrid", "w:spacing", "w:ind", "w:contextualSpacing", "w:mirrorIndents",
    "w:suppressOverlap", "w:jc", "w:textDirection", "w:textAlignment",
    "w:textboxTightWrap", "w:outlineLvl", "w:divId", "w:cnfStyle", "w:rPr",
    "w:sectPr", "w:pPrChange",
)
_PPR_AFTER_PBDR = ("w:shd",) + _PPR_AFTER_SHD
_TCPR_AFTER_SHD = ("w:noWrap", "w:tcMar", "w:textDirection", "w:tcFitText", "w:vAlign", "w:hideMark")
_TBLPR_AFTER_BORDERS = ("w:shd", "w:tblLayout", "w:tblCellMar", "w:tblLook")
_TBLPR_AFTER_MARGINS = ("w:tblLook", "w:tblCaption", "w:tblDescription")
_TBLPR_AFTER_WIDTH = ("w:jc", "w:tblCellSpacing", "w:tblInd") + _TBLPR_AFTER_BORDERS


def _escape_xml(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def _rgb(hex_str: str) -> RGBColor:
    return RGBColor.from_string(hex_str.lstrip("#").upper())


class DocxAssembler:
    """Builds a .docx from output elements."""

    def __init__(self, style: StyleConfig = DEFAULT_STYLE, pagination: bool = True):
        self.style = style
        self.pagination = pagination

    def build(self, elements) -> bytes:
        doc = Document()
        self._setup_page(doc)
        self._setup_styles(doc)
        for element in elements:
            if isinstance(element, Table):
                self._add_table(doc, element)
            elif isinstance(element, Paragraph):
                self._fill_paragraph(doc.add_paragraph(), element)
            else:
                raise TypeError(f"Cannot assemble {type(element).__name__}")
        if self.pagination:
            self._setup_footer(doc)
        buf = BytesIO()
        doc.save(buf)
        return buf.getvalue()

    # -- document setup ------------------------------------------------------
    @staticmethod
    def _setup_page(doc):
        for section in doc.sections:
            section.top_margin = Inches(1)
            section.bottom_margin = Inches(1)
            section.left_margin = Inches(1)
            section.right_margin = Inches(1)

    def _setup_styles(self, doc):
        s = self.style
        styles = doc.styles
        normal = styles["Normal"]
        normal.font.name = s.font_body
        normal.font.size = Pt(s.font_size)
        normal.font.color.rgb = _rgb(s.color_body)
        pf = normal.paragraph_format
        pf.space_before = Pt(0)
        pf.space_after = Pt(6)
        pf.line_spacing = 1.15

        for level in range(1, 7):
            sname = f"Heading {level}"
            try:
                h = styles[sname]
            except KeyError:
                h = styles.add_style(sname, WD_STYLE_TYPE.PARAGRAPH)
            h.font.name = s.font_heading
            h.font.size = Pt(s.heading_size(level))
            h.font.bold = True
            h.font.color.rgb = _rgb(s.color_heading)
            h.paragraph_format.keep_with_next = True

    # -- paragraphs ----------------------------------------------------------
    def _fill_paragraph(self, p, para: Paragraph):
        if para.heading_level:
            p.style = f"Heading {para.heading_level}"

        pf = p.paragraph_format
        if para.space_before is not None:
            pf.space_before = Pt(para.space_before)
        if para.space_after is not None:
            pf.space_after = Pt(para.space_after)
        if para.line_spacing is not None:
            pf.line_spacing = para.line_spacing
        if para.indent_left is not None:
            pf.left_indent = Inches(para.indent_left)

        ppr = p._element.get_or_add_pPr()
        if para.border is not None:
            b = para.border
            pbdr = parse_xml(
                f'<w:pBdr {nsdecls("w")}>'
                f'<w:{b.side} w:val="single" w:sz="{b.size}" w:space="{b.space}" w:color="{b.color}"/>'
                f"</w:pBdr>"
            )
            ppr.insert_element_before(pbdr, *_PPR_AFTER_PBDR)
        if para.shading:
            shd = parse_xml(f'<w:shd {nsdecls("w")} w:val="clear" w:color="auto" w:fill="{para.shading}"/>')
            ppr.insert_element_before(shd, *_PPR_AFTER_SHD)

        for run in para.runs:
            self._add_run(p, run)

    def _add_run(self, p, run: Run):
        if run.line_break:
            p.add_run().add_break()
            return
        if run.link:
            self._add_hyperlink(p, run)
            return
        r = p.add_run(run.text)
        if run.bold:
            r.bold = True
        if run.italic:
            r.italic = True
        if run.strike:
            r.font.strike = True
        if run.underline:
            r.underline = True
        if run.font:
            r.font.name = run.font
        if run.size:
            r.font.size = Pt(run.size)
        if run.color:
            r.font.color.rgb = _rgb(run.color)
        if run.shading:
            rpr = r._element.get_or_add_rPr()
            shd = parse_xml(f'<w:shd {nsdecls("w")} w:val="clear" w:color="auto" w:fill="{run.shading}"/>')
            rpr.insert_element_before(shd, "w:fitText", "w:vertAlign", "w:rtl", "w:cs", "w:em",
                                      "w:lang", "w:eastAsianLayout", "w:specVanish", "w:oMath")

    @staticmethod
    def _run_properties(run: Run) -> str:
        parts = ['<w:rStyle w:val="Hyperlink"/>']
        if run.font:
            parts.append(f'<w:rFonts w:ascii="{run.font}" w:hAnsi="{run.font}"/>')
        if run.bold:
            parts.append("<w:b/>")
        if run.italic:
            parts.append("<w:i/>")
        if run.color:
            parts.append(f'<w:color w:val="{run.color}"/>')
        if run.size:
            half_points = int(round(run.size * 2))
            parts.append(f'<w:sz w:val="{half_points}"/><w:szCs w:val="{half_points}"/>')
        if run.underline:
            parts.append('<w:u w:val="single"/>')
        return f"<w:rPr>{''.join(parts)}</w:rPr>"

    def _add_hyperlink(self, p, run: Run):
        """Insert a clickable hyperlink into a paragraph."""
        r_id = p.part.relate_to(run.link, RT.HYPERLINK, is_external=True)
        text = run.text or run.link
        hyperlink = parse_xml(
            f'<w:hyperlink {nsdecls("w", "r")} r:id="{r_id}">'
            f"<w:r>{self._run_properties(run)}"
            f'<w:t xml:space="preserve">{_escape_xml(text)}</w:t></w:r></w:hyperlink>'
        )
        p._element.append(hyperlink)

    # -- tables --------------------------------------------------------------
    def _add_table(self, doc, table: Table):
        ncols = table.column_count
        out = doc.add_table(rows=len(table.rows), cols=ncols)
        try:
            out.style = "Table Grid"
        except KeyError:
            pass

        self._set_table_width(out, table.width_pct)
        self._set_table_borders(out, table)
        self._set_table_cell_margins(out, table.cell_margin)

        for r_idx, row in enumerate(table.rows):
            if r_idx < table.header_rows:
                trpr = out.rows[r_idx]._tr.get_or_add_trPr()
                trpr.append(parse_xml(f'<w:tblHeader {nsdecls("w")}/>'))
            for c_idx, cell in enumerate(row):
                docx_cell = out.cell(r_idx, c_idx)
                docx_cell.vertical_alignment = WD_CELL_VERTICAL_ALIGNMENT.CENTER
                self._fill_paragraph(docx_cell.paragraphs[0], cell.paragraph)
                if cell.shading:
                    tcpr = docx_cell._element.get_or_add_tcPr()
                    shd = parse_xml(f'<w:shd {nsdecls("w")} w:val="clear" w:color="auto" w:fill="{cell.shading}"/>')
                    tcpr.insert_element_before(shd, *_TCPR_AFTER_SHD)

        # Spacing after table
        doc.add_paragraph()

    @staticmethod
    def _set_table_width(table, width_pct: int):
        tbl_pr = table._tbl.tblPr
        tbl_w = tbl_pr.find(qn("w:tblW"))
        if tbl_w is None:
            tbl_w = parse_xml(f'<w:tblW {nsdecls("w")}/>')
            tbl_pr.insert_element_before(tbl_w, *_TBLPR_AFTER_WIDTH)
        # pct widths are fiftieths of a percent
        tbl_w.set(qn("w:type"), "pct")
        tbl_w.set(qn("w:w"), str(width_pct * 50))

    @staticmethod
    def _set_table_borders(table, spec: Table):
        outer = f'w:val="single" w:sz="{spec.border_size}" w:space="0" w:color="{spec.border_color}"'
        inner_color = spec.inside_color or spec.border_color
        inner = f'w:val="single" w:sz="{spec.border_size}" w:space="0" w:color="{inner_color}"'
        borders = parse_xml(
            f'<w:tblBorders {nsdecls("w")}>'
            f"<w:top {outer}/><w:left {outer}/><w:bottom {outer}/><w:right {outer}/>"
            f"<w:insideH {inner}/><w:insideV {inner}/>"
            f"</w:tblBorders>"
        )
        tbl_pr = table._tbl.tblPr
        existing = tbl_pr.find(qn("w:tblBorders"))
        if existing is not None:
            tbl_pr.remove(existing)
        tbl_pr.insert_element_before(borders, *_TBLPR_AFTER_BORDERS)

    @staticmethod
    def _set_table_cell_margins(table, margin_twips: int):
        m = str(margin_twips)
        cell_mar = parse_xml(
            f'<w:tblCellMar {nsdecls("w")}>'
            f'<w:top w:w="{m}" w:type="dxa"/>'
            f'<w:left w:w="{m}" w:type="dxa"/>'
            f'<w:bottom w:w="{m}" w:type="dxa"/>'
            f'<w:right w:w="{m}" w:type="dxa"/>'
            f"</w:tblCellMar>"
        )
        table._tbl.tblPr.insert_element_before(cell_mar, *_TBLPR_AFTER_MARGINS)

    # -- footer --------------------------------------------------------------
    def _setup_footer(self, doc):
        """Centered "Page N" footer on every section."""
        s = self.style
        rpr = (f'<w:rPr><w:rFonts w:ascii="{s.font_body}" w:hAnsi="{s.font_body}"/>'
               f'<w:color w:val="{s.footer_text}"/><w:sz w:val="16"/><w:szCs w:val="16"/></w:rPr>')
        for section in doc.sections:
            footer = section.footer
            footer.is_linked_to_previous = False
            for p in list(footer.paragraphs):
                p._element.getparent().remove(p._element)

            p = parse_xml(f'<w:p {nsdecls("w")}><w:pPr><w:jc w:val="center"/></w:pPr></w:p>')
            for body in ('<w:t xml:space="preserve">Page </w:t>',
                         '<w:fldChar w:fldCharType="begin"/>',
                         '<w:instrText xml:space="preserve"> PAGE </w:instrText>',
                         '<w:fldChar w:fldCharType="end"/>'):
                p.append(parse_xml(f'<w:r {nsdecls("w")}>{rpr}{body}</w:r>'))
            footer._element.append(p)


def assemble(elements, style: StyleConfig = DEFAULT_STYLE, pagination: bool = True) -> bytes:
    """Serialize output elements to .docx bytes."""
    logger.debug("Assembling %d elements", len(elements))
    return DocxAssembler(style, pagination).build(elements)
