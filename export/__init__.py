"""
Serialisation of the normalized workbook back to .xlsx bytes.
"""
