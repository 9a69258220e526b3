import ast
import math
import operator
import xml.etree.ElementTree as ET
from typing import Dict, Optional

from splitcal.detector_config import SPLITCAL_DETECTOR_TYPES, SplitCalDimensions
from splitcal.errors import ConfigurationError


# Unit conversions (all to mm for length, rad for angles)
UNIT_CONVERSIONS = {
    'um': 0.001,
    'mm': 1.0,
    'cm': 10.0,
    'm': 1000.0,
    'rad': 1.0,
    'mrad': 0.001,
    'deg': math.pi / 180.0,
    'pi': math.pi,
}

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_NUMERIC_ATTRIBUTES = {
    'x', 'y', 'z', 'num_x', 'x_extra_spacing', 'x_offset', 'y_offset', 'extrazgap',
    'rmax', 'rmin', 'thickness',
}

_SPLITCAL_CHILDREN = (
    'box', 'rotation', 'position', 'widebar', 'thinbar', 'passive_layer',
    'split', 'hplbox', 'hplfibre', 'hplcore',
)


def evaluate_math_expression(expr_str, names=None):
    """
    Evaluate an arithmetic expression such as "(787.105+1.75)*mm".

    Parameters:
    -----------
    expr_str : str
        Expression built from numbers, names, + - * / ** and parentheses
    names : dict, optional
        Values of the names that may appear in the expression

    Returns:
    --------
    float or None
    """
    names = names or {}

    def _eval(node):
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return float(node.value)
        if isinstance(node, ast.Name):
            if node.id not in names:
                raise KeyError(node.id)
            return float(names[node.id])
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            return _BINARY_OPERATORS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
            return _UNARY_OPERATORS[type(node.op)](_eval(node.operand))
        raise ValueError(f"Unsupported expression element: {ast.dump(node)}")

    try:
        tree = ast.parse(str(expr_str).strip(), mode='eval')
        return _eval(tree.body)
    except (SyntaxError, KeyError, ValueError, TypeError, ZeroDivisionError, OverflowError):
        return None


def parse_value(value_str, constants=None):
    """
    Parse an attribute value that may reference constants and carry units.

    Parameters:
    -----------
    value_str : str
        String containing value to parse (e.g., "SplitCal_z/2 - 1.5*cm")
    constants : dict, optional
        Dictionary of already evaluated constants

    Returns:
    --------
    float or None
    """
    if value_str is None:
        return None

    if isinstance(value_str, (int, float)):
        return float(value_str)

    names = dict(UNIT_CONVERSIONS)
    if constants:
        names.update({k: v for k, v in constants.items() if isinstance(v, (int, float))})
    return evaluate_math_expression(value_str, names)


def parse_detector_constants(root):
    """
    Evaluate every <constant name=... value=...> below ``root``.

    Constants may refer to each other in any order; unresolvable or
    circular definitions are reported and left out.
    """
    raw_constants = {}
    for constant in root.findall('.//constant'):
        name = constant.get('name')
        if name is not None:
            raw_constants[name] = constant.get('value')

    constants = {}

    def evaluate_constant(name, visited):
        if name in constants:
            return constants[name]
        if name in visited:
            print(f"Warning: Circular dependency detected for {name}")
            print(f"  Dependency chain: {' -> '.join(visited)} -> {name}")
            return None
        visited = visited + [name]

        value_str = raw_constants[name]
        try:
            tree = ast.parse(str(value_str).strip(), mode='eval')
        except SyntaxError:
            print(f"Warning: Could not evaluate constant {name}: {value_str!r}")
            return None

        for node in ast.walk(tree):
            if isinstance(node, ast.Name) and node.id in raw_constants:
                evaluate_constant(node.id, visited)

        result = parse_value(value_str, constants)
        if result is None:
            print(f"Warning: Could not evaluate constant {name}: {value_str!r}")
            return None
        constants[name] = result
        return result

    for name in raw_constants:
        evaluate_constant(name, [])
    return constants


def _element_record(elem, constants, det_name):
    record = {}
    for attr, text in elem.attrib.items():
        if attr in _NUMERIC_ATTRIBUTES:
            value = parse_value(text, constants)
            if value is None:
                raise ConfigurationError(
                    f"{det_name}: cannot evaluate {elem.tag}.{attr} = {text!r}")
            record[attr] = value
        else:
            record[attr] = text
    return record


def parse_splitcal_detector(detector_elem, constants=None, name=None) -> SplitCalDimensions:
    """
    Turn a <detector> element of a compact file into a SplitCalDimensions.

    Parameters:
    -----------
    detector_elem : xml.etree.ElementTree.Element
        The detector element
    constants : dict, optional
        Constants used in attribute expressions
    """
    constants = constants or {}
    det_name = name or detector_elem.get('name', 'SplitCal')

    params = {
        'name': det_name,
        'id': parse_value(detector_elem.get('id', '0'), constants),
        'readout': detector_elem.get('readout'),
    }
    if detector_elem.get('layer_codes') is None:
        raise ConfigurationError(f"{det_name}: missing attribute 'layer_codes'")
    params['layer_codes'] = detector_elem.get('layer_codes')

    for attr in ('hpln_fibre_layers', 'num_layers'):
        text = detector_elem.get(attr)
        if text is None:
            continue
        value = parse_value(text, constants)
        if value is None:
            raise ConfigurationError(f"{det_name}: cannot evaluate {attr} = {text!r}")
        params[attr] = value

    for child in _SPLITCAL_CHILDREN:
        elem = detector_elem.find(child)
        if elem is not None:
            params[child] = _element_record(elem, constants, det_name)

    return SplitCalDimensions.from_dict(params)


def load_splitcal_compact(xml_file, constants: Optional[Dict[str, float]] = None) -> Dict[str, SplitCalDimensions]:
    """
    Read every SplitCal detector of a compact file.

    Returns:
    --------
    dict mapping detector type name to its SplitCalDimensions
    """
    tree = ET.parse(xml_file)
    root = tree.getroot()

    all_constants = parse_detector_constants(root)
    if constants:
        all_constants.update(constants)

    configs = {}
    for detector in root.iter('detector'):
        type_name = detector.get('type')
        if type_name not in SPLITCAL_DETECTOR_TYPES:
            continue
        if type_name in configs:
            print(f"Warning: more than one {type_name} detector in {xml_file}, keeping the first")
            continue
        configs[type_name] = parse_splitcal_detector(detector, all_constants)

    if not configs:
        raise ConfigurationError(f"No SplitCal detector found in {xml_file}")
    return configs
